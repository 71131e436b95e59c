"""Job runner - executes one job definition, stage by stage, step by step.

Architecture:

    .. code-block:: text

        execute(job)
          for stage in job.stages:                     (declared order)
            ├── race ContainerSession.open(stage.image) vs abort.wait()
            │     ├── abort wins → cancel provisioning ► ABORTED
            │     └── ContainerUnavailableError ──────► CONTAINER_UNAVAILABLE
            └── async with session:                    (closed exactly once)
                  for step in stage.steps:             (declared order)
                    ├── abort set? ───────────────────► ABORTED
                    ├── race run_step vs abort.wait()
                    │     ├── abort wins → kill step ─► ABORTED
                    │     └── ContainerUnavailableError ► CONTAINER_UNAVAILABLE
                    └── exit_code != 0 ───────────────► STEP_FAILED(flat index, code)
          ──────────────────────────────────────────► SUCCESS

    Fail-fast: the first non-success ends the job; nothing after it runs.
    Step indices are flattened across stages.

Concurrency:
    One logical thread of control per job. ``execute`` may be called for
    several jobs concurrently on one event loop; calls share no mutable
    state. If the task running ``execute`` is itself cancelled, the open
    session is still closed and the cancellation propagates.

Tags:
    conveyor, execution, job-runner, fail-fast
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar

from conveyor.core.errors import ContainerUnavailableError
from conveyor.core.logging import LogContext, get_logger
from conveyor.execution.abort import AbortSignal
from conveyor.execution.models import (
    ContainerStage,
    ExecutionResult,
    JobDefinition,
    OutputLine,
    StepOutcome,
    StepRecord,
    _utcnow,
)
from conveyor.execution.runtimes._types import ContainerRuntime
from conveyor.execution.session import ContainerSession
from conveyor.execution.step_executor import StepExecutor

logger = get_logger(__name__)

_T = TypeVar("_T")


class JobRunner:
    """Runs every stage and step of a job and reports one terminal result."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        executor: StepExecutor | None = None,
        on_output: Callable[[OutputLine], None] | None = None,
    ) -> None:
        self.runtime = runtime
        self._executor = executor or StepExecutor()
        self._on_output = on_output

    async def execute(
        self,
        job: JobDefinition,
        *,
        abort: AbortSignal | None = None,
    ) -> ExecutionResult:
        abort = abort or AbortSignal()
        run = _JobRun(job=job, started_at=_utcnow())

        with LogContext(job=job.name):
            logger.info(
                "job.started",
                stages=len(job.stages),
                steps=job.step_count,
                runtime=getattr(self.runtime, "runtime_name", "?"),
            )
            result = await self._execute_stages(run, abort)
            result = dataclasses.replace(result, finished_at=_utcnow())
            logger.info(
                "job.finished",
                outcome=result.outcome.value,
                failed_step=result.failed_step_index,
                duration_s=round(result.duration_seconds, 3),
            )
            return result

    async def _execute_stages(self, run: _JobRun, abort: AbortSignal) -> ExecutionResult:
        flat_index = 0
        for stage_index, stage in enumerate(run.job.stages):
            if abort.aborted:
                return run.aborted(abort)

            with LogContext(stage=stage_index):
                result = await self._execute_stage(run, stage_index, stage, flat_index, abort)
            if result is not None:
                return result
            flat_index += len(stage.steps)

        return ExecutionResult.success(
            run.job.name, steps=run.records, started_at=run.started_at,
        )

    async def _execute_stage(
        self,
        run: _JobRun,
        stage_index: int,
        stage: ContainerStage,
        first_index: int,
        abort: AbortSignal,
    ) -> ExecutionResult | None:
        """Run one stage; return a terminal result, or None to continue."""
        open_task = await _race_abort(
            ContainerSession.open(
                self.runtime,
                stage.image,
                job_name=run.job.name,
                env=stage.env,
                executor=self._executor,
                on_output=self._on_output,
            ),
            abort,
        )
        if open_task.cancelled():
            logger.warning("stage.aborted", image=stage.image, reason=abort.reason)
            return run.aborted(abort)
        try:
            session = open_task.result()
        except ContainerUnavailableError as exc:
            logger.error("stage.unavailable", image=stage.image, error=exc.message)
            return ExecutionResult.container_unavailable(
                run.job.name,
                message=exc.message,
                steps=run.records,
                started_at=run.started_at,
            )

        async with session:
            for offset, step in enumerate(stage.steps):
                index = first_index + offset
                if abort.aborted:
                    return run.aborted(abort)

                started = time.monotonic()
                try:
                    outcome = await self._run_step(session, step.command, index, abort)
                except ContainerUnavailableError as exc:
                    logger.error("step.unavailable", step=index, error=exc.message)
                    run.record(index, stage_index, step.command, None,
                               session.log.for_step(index), started)
                    return ExecutionResult.container_unavailable(
                        run.job.name,
                        message=exc.message,
                        steps=run.records,
                        started_at=run.started_at,
                    )

                if outcome is None:
                    logger.warning("step.aborted", step=index, reason=abort.reason)
                    run.record(index, stage_index, step.command, None,
                               session.log.for_step(index), started)
                    return run.aborted(abort)

                run.record(index, stage_index, step.command, outcome.exit_code,
                           outcome.combined_output, started)
                logger.info("step.finished", step=index, exit_code=outcome.exit_code)

                if not outcome.succeeded:
                    return ExecutionResult.step_failed(
                        run.job.name,
                        index=index,
                        exit_code=outcome.exit_code,
                        steps=run.records,
                        started_at=run.started_at,
                    )
        return None

    async def _run_step(
        self,
        session: ContainerSession,
        command: str,
        index: int,
        abort: AbortSignal,
    ) -> StepOutcome | None:
        """Run a step, racing it against the abort signal.

        Returns None if the abort won; the step has been killed by then.
        """
        with LogContext(step=index):
            logger.info("step.started", command=command)
            step_task = await _race_abort(session.run_step(command, step_index=index), abort)

        if step_task.cancelled():
            return None
        return step_task.result()


async def _race_abort(awaitable: Awaitable[_T], abort: AbortSignal) -> asyncio.Task[_T]:
    """Run ``awaitable`` until it finishes or ``abort`` fires.

    Returns the finished task. If the abort came first the task is
    cancelled and awaited, so ``task.cancelled()`` is true.
    """
    task = asyncio.ensure_future(awaitable)
    abort_task = asyncio.create_task(abort.wait())
    try:
        await asyncio.wait({task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        abort_task.cancel()
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
    return task


@dataclasses.dataclass
class _JobRun:
    """Mutable bookkeeping for one ``execute`` call."""

    job: JobDefinition
    started_at: datetime
    records: list[StepRecord] = dataclasses.field(default_factory=list)

    def record(
        self,
        index: int,
        stage_index: int,
        command: str,
        exit_code: int | None,
        output: tuple[str, ...],
        started: float,
    ) -> None:
        self.records.append(StepRecord(
            index=index,
            stage_index=stage_index,
            command=command,
            exit_code=exit_code,
            output=tuple(output),
            duration_seconds=time.monotonic() - started,
        ))

    def aborted(self, abort: AbortSignal) -> ExecutionResult:
        return ExecutionResult.aborted(
            self.job.name,
            steps=self.records,
            message=abort.reason or "Run aborted",
            started_at=self.started_at,
        )
