"""Conveyor execution engine.

Leaves first:

    StepExecutor      - runs one command in a session, captures output
    ContainerSession  - acquire → run steps → release one sandbox
    JobRunner         - runs all stages/steps of one job, fail-fast
    RunCoordinator    - pulls one job from a descriptor source and runs it

Data flows Descriptor Source → RunCoordinator → JobRunner →
ContainerSession → StepExecutor; results flow back up unchanged except
for aggregation.
"""

from conveyor.execution.abort import AbortSignal
from conveyor.execution.coordinator import RunCoordinator
from conveyor.execution.job_runner import JobRunner
from conveyor.execution.models import (
    EXIT_ABORTED,
    EXIT_CONTAINER_UNAVAILABLE,
    EXIT_DESCRIPTOR_ERROR,
    EXIT_STEP_FAILED,
    EXIT_SUCCESS,
    ContainerStage,
    ExecutionResult,
    JobDefinition,
    OutcomeKind,
    OutputLine,
    SessionHandle,
    SessionLog,
    Step,
    StepOutcome,
    StepRecord,
)
from conveyor.execution.session import ContainerSession
from conveyor.execution.step_executor import StepExecutor

__all__ = [
    "AbortSignal",
    "ContainerSession",
    "JobRunner",
    "RunCoordinator",
    "StepExecutor",
    # Models
    "ContainerStage",
    "ExecutionResult",
    "JobDefinition",
    "OutcomeKind",
    "OutputLine",
    "SessionHandle",
    "SessionLog",
    "Step",
    "StepOutcome",
    "StepRecord",
    # Exit codes
    "EXIT_ABORTED",
    "EXIT_CONTAINER_UNAVAILABLE",
    "EXIT_DESCRIPTOR_ERROR",
    "EXIT_STEP_FAILED",
    "EXIT_SUCCESS",
]
