"""Base container runtime with shared lifecycle logic.

Provides ``BaseContainerRuntime`` with common patterns (logging, error
wrapping, health timing) and ``StubContainerRuntime``, a recording
in-memory runtime for unit tests.

Architecture:

    .. code-block:: text

        ContainerRuntime (Protocol)
              │
              ▼
        BaseContainerRuntime
        ├── provision() → logging + error wrapping → _do_provision()
        ├── exec()      → error wrapping           → _do_exec()
        ├── teardown()  → logging + non-fatal      → _do_teardown()
        └── health()    → latency timing           → _do_health()
              │
        ┌─────┼──────────────────────┐
        ▼     ▼                      ▼
    LocalProcessRuntime   DockerRuntime   StubContainerRuntime

    Any exception other than ``ContainerUnavailableError`` escaping a
    ``_do_provision``/``_do_exec`` is wrapped into one, so callers only
    ever see the typed error. ``asyncio.CancelledError`` is never caught.

Usage:
    # In tests:
    runtime = StubContainerRuntime(exit_codes={"build": 1})
    handle = await runtime.provision("builder:latest")
    proc = await runtime.exec(handle, "build")
    assert await proc.wait() == 1

Tags:
    conveyor, execution, runtimes, base, stub

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Collection, Mapping, Sequence
from dataclasses import dataclass, field

from conveyor.core.errors import ContainerUnavailableError
from conveyor.execution.models import SessionHandle, _utcnow
from conveyor.execution.runtimes._types import STDOUT, ExecProcess, RuntimeHealth

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base runtime
# ---------------------------------------------------------------------------

class BaseContainerRuntime:
    """Base class for container runtimes with shared lifecycle logic.

    Subclasses MUST implement:
        runtime_name, _do_provision, _do_exec, _do_teardown, _do_health

    .. code-block:: text

        provision(image)
          ├── log: "Provisioning 'X' on docker"
          ├── _do_provision(image)  ← subclass implements
          └── on error: wrap in ContainerUnavailableError

        teardown(handle)
          ├── _do_teardown(handle)  ← subclass implements
          └── on error: log warning, never raise
    """

    @property
    def runtime_name(self) -> str:
        """Unique name for this runtime."""
        raise NotImplementedError

    async def provision(
        self,
        image: str,
        *,
        job_name: str = "",
        env: Mapping[str, str] | None = None,
    ) -> SessionHandle:
        """Provision a sandbox for ``image``."""
        logger.info("Provisioning '%s' on %s", image, self.runtime_name)
        try:
            handle = await self._do_provision(image, job_name=job_name, env=dict(env or {}))
        except ContainerUnavailableError as exc:
            exc.with_context(image=image, runtime=self.runtime_name)
            logger.error("Provisioning '%s' failed on %s: %s", image, self.runtime_name, exc)
            raise
        except Exception as exc:
            logger.error("Provisioning '%s' failed on %s: %s", image, self.runtime_name, exc)
            raise ContainerUnavailableError(
                f"Provision failed: {exc}", cause=exc,
            ).with_context(image=image, runtime=self.runtime_name) from exc
        logger.info("Provisioned '%s' on %s: ref=%s", image, self.runtime_name, handle.ref)
        return handle

    async def exec(
        self,
        handle: SessionHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
    ) -> ExecProcess:
        """Start ``command`` inside the sandbox behind ``handle``."""
        logger.debug("Exec in %s: %s", handle.ref, command)
        try:
            return await self._do_exec(handle, command, env=dict(env or {}))
        except ContainerUnavailableError:
            raise
        except Exception as exc:
            raise ContainerUnavailableError(
                f"Exec failed in {handle.ref}: {exc}", cause=exc,
            ).with_context(image=handle.image, runtime=self.runtime_name) from exc

    async def teardown(self, handle: SessionHandle) -> None:
        """Tear down with logging. Idempotent, never raises."""
        logger.info("Tearing down %s on %s", handle.ref, self.runtime_name)
        try:
            await self._do_teardown(handle)
        except Exception as exc:
            logger.warning("Teardown failed for %s: %s (non-fatal)", handle.ref, exc)

    async def health(self) -> RuntimeHealth:
        """Health check with latency timing."""
        start = _utcnow()
        try:
            result = await self._do_health()
            elapsed = (_utcnow() - start).total_seconds() * 1000
            return RuntimeHealth(
                healthy=result.healthy,
                runtime=self.runtime_name,
                version=result.version,
                message=result.message,
                latency_ms=elapsed,
            )
        except Exception as exc:
            elapsed = (_utcnow() - start).total_seconds() * 1000
            return RuntimeHealth(
                healthy=False,
                runtime=self.runtime_name,
                message=f"Health check failed: {exc}",
                latency_ms=elapsed,
            )

    # --- Abstract methods for subclasses ---

    async def _do_provision(
        self, image: str, *, job_name: str, env: dict[str, str],
    ) -> SessionHandle:
        raise NotImplementedError

    async def _do_exec(
        self, handle: SessionHandle, command: str, *, env: dict[str, str],
    ) -> ExecProcess:
        raise NotImplementedError

    async def _do_teardown(self, handle: SessionHandle) -> None:
        raise NotImplementedError

    async def _do_health(self) -> RuntimeHealth:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Stub runtime for testing
# ---------------------------------------------------------------------------

@dataclass
class _StubSession:
    """Internal state for a stubbed sandbox."""

    handle: SessionHandle
    env: dict[str, str] = field(default_factory=dict)
    torn_down: bool = False


class _StubProcess:
    """Scripted process: emits canned output, then exits or blocks."""

    def __init__(
        self,
        runtime: StubContainerRuntime,
        command: str,
        *,
        exit_code: int,
        output: Sequence[str | tuple[str, str]],
        block: bool,
    ) -> None:
        self._runtime = runtime
        self._command = command
        self._exit_code = exit_code
        self._output = output
        self._block = block
        self._killed = asyncio.Event()

    async def lines(self) -> AsyncIterator[tuple[str, str]]:
        for item in self._output:
            if isinstance(item, tuple):
                yield item
            else:
                yield STDOUT, item
        if self._block:
            self._runtime.blocked.set()
            await self._killed.wait()

    async def wait(self) -> int:
        if self._block:
            await self._killed.wait()
            return -9
        return self._exit_code

    async def kill(self) -> None:
        if not self._killed.is_set():
            self._killed.set()
            self._runtime.killed.append(self._command)


class StubContainerRuntime(BaseContainerRuntime):
    """In-memory, recording container runtime for unit tests.

    Every command exits with ``exit_codes.get(command, 0)`` and emits
    ``outputs.get(command, ["[stub] <command>"])``. Commands listed in
    ``block_on`` never finish on their own: they set ``blocked`` and wait
    until killed, which lets tests inject cancellation mid-step. Images in
    ``slow_images`` block provisioning the same way until cancelled.

    .. code-block:: text

        Inject failures:
          runtime.fail_provision = True   → provision() raises ContainerUnavailableError
          unavailable_images={"img"}      → same, for those images only
          runtime.fail_exec = True        → exec() raises ContainerUnavailableError

        Track usage:
          runtime.provisioned   → images, in provisioning order
          runtime.executed      → commands, in execution order
          runtime.torn_down     → refs, in teardown order
          runtime.killed        → commands killed while running

    Example:
        >>> runtime = StubContainerRuntime(exit_codes={"build-deps": 1})
        >>> runtime.fail_provision = True  # next provision() fails
    """

    def __init__(
        self,
        *,
        exit_codes: Mapping[str, int] | None = None,
        outputs: Mapping[str, Sequence[str | tuple[str, str]]] | None = None,
        block_on: Collection[str] = (),
        unavailable_images: Collection[str] = (),
        slow_images: Collection[str] = (),
    ) -> None:
        self.exit_codes = dict(exit_codes or {})
        self.outputs = dict(outputs or {})
        self.block_on = set(block_on)
        self.unavailable_images = set(unavailable_images)
        self.slow_images = set(slow_images)

        self.sessions: dict[str, _StubSession] = {}
        self.provision_attempts: int = 0
        self.provisioned: list[str] = []
        self.executed: list[str] = []
        self.exec_envs: list[dict[str, str]] = []
        self.torn_down: list[str] = []
        self.killed: list[str] = []
        self.blocked = asyncio.Event()

        # Inject failures
        self.fail_provision: bool = False
        self.fail_exec: bool = False
        self.fail_health: bool = False

    @property
    def runtime_name(self) -> str:
        return "stub"

    @property
    def provision_count(self) -> int:
        return len(self.provisioned)

    @property
    def teardown_count(self) -> int:
        return len(self.torn_down)

    async def _do_provision(
        self, image: str, *, job_name: str, env: dict[str, str],
    ) -> SessionHandle:
        self.provision_attempts += 1
        if self.fail_provision or image in self.unavailable_images:
            raise ContainerUnavailableError(f"Stub: provision failure injected for {image}")
        if image in self.slow_images:
            self.blocked.set()
            await asyncio.Event().wait()
        handle = SessionHandle(
            ref=f"stub-{uuid.uuid4().hex[:12]}",
            image=image,
            runtime=self.runtime_name,
            metadata={"job_name": job_name},
        )
        self.sessions[handle.ref] = _StubSession(handle=handle, env=env)
        self.provisioned.append(image)
        return handle

    async def _do_exec(
        self, handle: SessionHandle, command: str, *, env: dict[str, str],
    ) -> ExecProcess:
        session = self.sessions.get(handle.ref)
        if session is None or session.torn_down:
            raise ContainerUnavailableError(f"Stub: no live sandbox {handle.ref}")
        if self.fail_exec:
            raise ContainerUnavailableError(f"Stub: exec failure injected for {command!r}")
        self.executed.append(command)
        self.exec_envs.append({**session.env, **env})
        return _StubProcess(
            self,
            command,
            exit_code=self.exit_codes.get(command, 0),
            output=self.outputs.get(command, [f"[stub] {command}"]),
            block=command in self.block_on,
        )

    async def _do_teardown(self, handle: SessionHandle) -> None:
        self.torn_down.append(handle.ref)
        session = self.sessions.get(handle.ref)
        if session:
            session.torn_down = True

    async def _do_health(self) -> RuntimeHealth:
        if self.fail_health:
            return RuntimeHealth(
                healthy=False,
                runtime="stub",
                message="Stub: health failure injected",
            )
        return RuntimeHealth(healthy=True, runtime="stub", version="0.0.0-stub")
