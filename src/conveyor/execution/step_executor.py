"""Step executor - runs one shell command inside a live session.

.. code-block:: text

    run(session, command)
      ├── runtime.exec(handle, command)         → ExecProcess
      ├── for (stream, text) in process.lines():
      │       session.log.append(OutputLine)     (real time, per-stream order kept)
      ├── exit_code = process.wait()
      └── StepOutcome(exit_code, combined_output)

    A non-zero exit code is returned, not raised; the caller decides
    what it means. Sandbox failures surface as ContainerUnavailableError.
    If the awaiting task is cancelled, the process is killed first.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from conveyor.core.errors import ContainerUnavailableError
from conveyor.core.logging import get_logger
from conveyor.execution.models import OutputLine, StepOutcome

if TYPE_CHECKING:
    from conveyor.execution.session import ContainerSession

logger = get_logger(__name__)


class StepExecutor:
    """Runs a single command to completion and captures its output."""

    async def run(
        self,
        session: ContainerSession,
        command: str,
        *,
        step_index: int = 0,
    ) -> StepOutcome:
        if not command or not command.strip():
            raise ValueError("Step command must be a non-empty string")

        process = await session.runtime.exec(session.handle, command)
        output: list[str] = []
        try:
            async for stream, text in process.lines():
                session.log.append(OutputLine(step_index=step_index, stream=stream, text=text))
                output.append(text)
            exit_code = await process.wait()
        except asyncio.CancelledError:
            logger.warning("step.killed", step=step_index, ref=session.handle.ref)
            await process.kill()
            raise
        except ContainerUnavailableError:
            await process.kill()
            raise
        except Exception as exc:
            await process.kill()
            raise ContainerUnavailableError(
                f"Lost connection to {session.handle.ref} during step {step_index}: {exc}",
                cause=exc,
            ).with_context(step=step_index, image=session.handle.image) from exc

        return StepOutcome(exit_code=exit_code, combined_output=tuple(output))
