"""Container session - lifecycle of one sandbox.

A session owns exactly one ``SessionHandle`` from provisioning until
close, and runs steps in it strictly one at a time.

.. code-block:: text

    session = await ContainerSession.open(runtime, image)   # provision
    async with session:                                      # close on every exit path
        await session.run_step("make deps", step_index=0)
        await session.run_step("make", step_index=1)

    close() is idempotent: the first call tears the sandbox down,
    later calls do nothing.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from conveyor.core.errors import SessionBusyError, SessionClosedError
from conveyor.core.logging import get_logger
from conveyor.execution.models import OutputLine, SessionHandle, SessionLog, StepOutcome
from conveyor.execution.runtimes._types import ContainerRuntime
from conveyor.execution.step_executor import StepExecutor

logger = get_logger(__name__)


class ContainerSession:
    """Scoped ownership of one live sandbox."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        handle: SessionHandle,
        *,
        executor: StepExecutor | None = None,
        on_output: Callable[[OutputLine], None] | None = None,
    ) -> None:
        self.runtime = runtime
        self.handle = handle
        self.log = SessionLog(listener=on_output)
        self._executor = executor or StepExecutor()
        self._closed = False
        self._busy = False

    @classmethod
    async def open(
        cls,
        runtime: ContainerRuntime,
        image: str,
        *,
        job_name: str = "",
        env: Mapping[str, str] | None = None,
        executor: StepExecutor | None = None,
        on_output: Callable[[OutputLine], None] | None = None,
    ) -> ContainerSession:
        """Provision a sandbox for ``image``.

        Raises:
            ContainerUnavailableError: If the image cannot be provisioned.
        """
        handle = await runtime.provision(image, job_name=job_name, env=env)
        logger.info("session.opened", ref=handle.ref, image=image, runtime=handle.runtime)
        return cls(runtime, handle, executor=executor, on_output=on_output)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def busy(self) -> bool:
        return self._busy

    async def run_step(self, command: str, *, step_index: int = 0) -> StepOutcome:
        """Run one step; at most one step runs per session at a time."""
        if self._closed:
            raise SessionClosedError(f"Session {self.handle.ref} is closed")
        if self._busy:
            raise SessionBusyError(
                f"Session {self.handle.ref} is already running a step"
            ).with_context(step=step_index)

        self._busy = True
        try:
            return await self._executor.run(self, command, step_index=step_index)
        finally:
            self._busy = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.runtime.teardown(self.handle)
        logger.info("session.closed", ref=self.handle.ref, lines=len(self.log))

    async def __aenter__(self) -> ContainerSession:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"ContainerSession({self.handle.ref!r}, image={self.handle.image!r}, {state})"
