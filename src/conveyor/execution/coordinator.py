"""Run coordinator - the single external entry point of the engine.

Pulls exactly one job from a descriptor source, hands it to the job
runner, and surfaces the result unchanged. The process exit code is
derived from the outcome:

    ======================  =====
    outcome                 exit
    ======================  =====
    SUCCESS                 0
    STEP_FAILED             1
    (descriptor error)      2
    CONTAINER_UNAVAILABLE   3
    ABORTED                 130
    ======================  =====

Example:
    >>> coordinator = RunCoordinator.for_runtime(LocalProcessRuntime())
    >>> result = await coordinator.run(YamlDescriptorSource.from_file("job.yaml"))
    >>> sys.exit(RunCoordinator.exit_code(result))
"""

from __future__ import annotations

from collections.abc import Callable

from conveyor.core.errors import DescriptorError
from conveyor.core.logging import get_logger
from conveyor.descriptors.protocol import DescriptorSource
from conveyor.execution.abort import AbortSignal
from conveyor.execution.job_runner import JobRunner
from conveyor.execution.models import ExecutionResult, JobDefinition, OutputLine
from conveyor.execution.runtimes._types import ContainerRuntime

logger = get_logger(__name__)


class RunCoordinator:
    """Accepts one job from a descriptor source and runs it."""

    def __init__(self, runner: JobRunner) -> None:
        self.runner = runner

    @classmethod
    def for_runtime(
        cls,
        runtime: ContainerRuntime,
        *,
        on_output: Callable[[OutputLine], None] | None = None,
    ) -> RunCoordinator:
        return cls(JobRunner(runtime, on_output=on_output))

    async def run(
        self,
        source: DescriptorSource,
        *,
        abort: AbortSignal | None = None,
    ) -> ExecutionResult:
        """Run the next job of ``source``.

        Raises:
            DescriptorError: If the source yields no job or a malformed one.
        """
        try:
            job = source.next_job()
        except DescriptorError:
            raise
        except (TypeError, ValueError) as exc:
            raise DescriptorError(f"Malformed job definition: {exc}", cause=exc) from exc

        if job is None:
            raise DescriptorError("Descriptor source yielded no job")
        if not isinstance(job, JobDefinition):
            raise DescriptorError(
                f"Descriptor source yielded {type(job).__name__}, expected JobDefinition"
            )

        logger.info("run.accepted", job=job.name)
        return await self.runner.execute(job, abort=abort)

    @staticmethod
    def exit_code(result: ExecutionResult) -> int:
        """Process exit code for a result: 0 on success, non-zero per outcome kind."""
        return result.exit_code


__all__ = ["RunCoordinator"]
