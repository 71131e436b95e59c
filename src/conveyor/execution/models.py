"""Execution models - jobs, stages, steps and their results.

The descriptor's nesting (job → container → script) maps onto nested
immutable value types:

.. code-block:: text

    JobDefinition(name)
    └── ContainerStage(image, display_name, env)   × 1..n
        └── Step(command)                          × 1..n

    ExecutionResult(job_name, outcome)
    ├── OutcomeKind: SUCCESS | STEP_FAILED | CONTAINER_UNAVAILABLE | ABORTED
    ├── failed_step_index / failed_exit_code   (STEP_FAILED only)
    └── StepRecord × executed steps (flattened index, exit code, output)

Step indices in results are *flattened*: zero-based positions in the
sequence of all steps across all stages, in execution order.

Invariant violations on construction raise ``DescriptorError`` so a bad
descriptor fails before any container is provisioned.

Tags:
    conveyor, execution, models, job-definition, result

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from conveyor.core.errors import DescriptorError


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Process exit codes
# ---------------------------------------------------------------------------

EXIT_SUCCESS = 0
EXIT_STEP_FAILED = 1
EXIT_DESCRIPTOR_ERROR = 2
EXIT_CONTAINER_UNAVAILABLE = 3
EXIT_ABORTED = 130


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """One shell command line. Opaque to the engine."""

    command: str

    def __post_init__(self) -> None:
        if not isinstance(self.command, str) or not self.command.strip():
            raise DescriptorError("Step command must be a non-empty string")


@dataclass(frozen=True)
class ContainerStage:
    """A sandbox image plus the ordered steps run inside it.

    ``steps`` accepts ``Step`` objects or plain command strings; either way
    it is stored as a tuple of ``Step`` in declaration order.

    Example:
        >>> stage = ContainerStage(image="builder:latest", steps=["make deps", "make"])
        >>> [s.command for s in stage.steps]
        ['make deps', 'make']
    """

    image: str
    steps: tuple[Step, ...]
    display_name: str = ""
    env: dict[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not isinstance(self.image, str) or not self.image.strip():
            raise DescriptorError("Container stage image must be a non-empty string")
        steps = tuple(
            s if isinstance(s, Step) else Step(command=s) for s in self.steps
        )
        if not steps:
            raise DescriptorError(
                f"Container stage {self.label!r} must declare at least one step"
            )
        object.__setattr__(self, "steps", steps)
        object.__setattr__(self, "env", {str(k): str(v) for k, v in self.env.items()})

    @property
    def label(self) -> str:
        """Display name if set, else the image reference."""
        return self.display_name or self.image


@dataclass(frozen=True)
class JobDefinition:
    """A named job made of one or more container stages."""

    name: str
    stages: tuple[ContainerStage, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise DescriptorError("Job name must be a non-empty string")
        stages = tuple(self.stages)
        if not stages:
            raise DescriptorError(f"Job {self.name!r} must declare at least one container stage")
        object.__setattr__(self, "stages", stages)

    @property
    def step_count(self) -> int:
        return sum(len(stage.steps) for stage in self.stages)

    def flattened_steps(self) -> Iterator[tuple[int, int, Step]]:
        """Yield ``(flat_index, stage_index, step)`` in execution order."""
        index = 0
        for stage_index, stage in enumerate(self.stages):
            for step in stage.steps:
                yield index, stage_index, step
                index += 1


# ---------------------------------------------------------------------------
# Session plumbing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionHandle:
    """Ownership token for one live sandbox, issued by a container runtime."""

    ref: str
    image: str
    runtime: str
    created_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class OutputLine:
    """One line of step output as it was appended to a session log."""

    step_index: int
    stream: str
    text: str
    timestamp: datetime = field(default_factory=_utcnow)


class SessionLog:
    """Append-only output log of one container session.

    Only the step executor writes to it, one step at a time, so there is a
    single writer by construction. An optional listener sees every line as
    it is appended (the CLI uses it to stream output live).
    """

    def __init__(self, listener: Callable[[OutputLine], None] | None = None) -> None:
        self._lines: list[OutputLine] = []
        self._listener = listener

    def append(self, line: OutputLine) -> None:
        self._lines.append(line)
        if self._listener is not None:
            self._listener(line)

    def lines(self) -> tuple[OutputLine, ...]:
        return tuple(self._lines)

    def for_step(self, step_index: int) -> tuple[str, ...]:
        """Text of every line written by one step, in arrival order."""
        return tuple(line.text for line in self._lines if line.step_index == step_index)

    def render(self) -> str:
        """Plain-text rendering, ``[step N stream] text`` per line."""
        return "\n".join(
            f"[step {line.step_index} {line.stream}] {line.text}" for line in self._lines
        )

    def __len__(self) -> int:
        return len(self._lines)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StepOutcome:
    """Exit status and combined output of one finished command."""

    exit_code: int
    combined_output: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class StepRecord:
    """One executed step as reported in an ``ExecutionResult``."""

    index: int
    stage_index: int
    command: str
    exit_code: int | None
    output: tuple[str, ...] = ()
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "stage_index": self.stage_index,
            "command": self.command,
            "exit_code": self.exit_code,
            "output": list(self.output),
            "duration_seconds": round(self.duration_seconds, 3),
        }


class OutcomeKind(str, Enum):
    """Terminal outcome of a job run."""

    SUCCESS = "success"
    STEP_FAILED = "step_failed"
    CONTAINER_UNAVAILABLE = "container_unavailable"
    ABORTED = "aborted"

    @property
    def exit_code(self) -> int:
        return _OUTCOME_EXIT_CODES[self]


_OUTCOME_EXIT_CODES: dict[OutcomeKind, int] = {
    OutcomeKind.SUCCESS: EXIT_SUCCESS,
    OutcomeKind.STEP_FAILED: EXIT_STEP_FAILED,
    OutcomeKind.CONTAINER_UNAVAILABLE: EXIT_CONTAINER_UNAVAILABLE,
    OutcomeKind.ABORTED: EXIT_ABORTED,
}


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal, immutable result of one job run.

    Build it through the outcome constructors rather than directly:

    Example:
        >>> result = ExecutionResult.step_failed("build", index=1, exit_code=1)
        >>> (result.outcome, result.failed_step_index, result.exit_code)
        (<OutcomeKind.STEP_FAILED: 'step_failed'>, 1, 1)
    """

    job_name: str
    outcome: OutcomeKind
    steps: tuple[StepRecord, ...] = ()
    failed_step_index: int | None = None
    failed_exit_code: int | None = None
    message: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def success(
        cls,
        job_name: str,
        *,
        steps: Sequence[StepRecord] = (),
        started_at: datetime | None = None,
    ) -> ExecutionResult:
        return cls(
            job_name=job_name,
            outcome=OutcomeKind.SUCCESS,
            steps=tuple(steps),
            started_at=started_at or _utcnow(),
        )

    @classmethod
    def step_failed(
        cls,
        job_name: str,
        *,
        index: int,
        exit_code: int,
        steps: Sequence[StepRecord] = (),
        started_at: datetime | None = None,
    ) -> ExecutionResult:
        return cls(
            job_name=job_name,
            outcome=OutcomeKind.STEP_FAILED,
            steps=tuple(steps),
            failed_step_index=index,
            failed_exit_code=exit_code,
            message=f"Step {index} exited with code {exit_code}",
            started_at=started_at or _utcnow(),
        )

    @classmethod
    def container_unavailable(
        cls,
        job_name: str,
        *,
        message: str,
        steps: Sequence[StepRecord] = (),
        started_at: datetime | None = None,
    ) -> ExecutionResult:
        return cls(
            job_name=job_name,
            outcome=OutcomeKind.CONTAINER_UNAVAILABLE,
            steps=tuple(steps),
            message=message,
            started_at=started_at or _utcnow(),
        )

    @classmethod
    def aborted(
        cls,
        job_name: str,
        *,
        steps: Sequence[StepRecord] = (),
        message: str = "Run aborted",
        started_at: datetime | None = None,
    ) -> ExecutionResult:
        return cls(
            job_name=job_name,
            outcome=OutcomeKind.ABORTED,
            steps=tuple(steps),
            message=message,
            started_at=started_at or _utcnow(),
        )

    @property
    def succeeded(self) -> bool:
        return self.outcome is OutcomeKind.SUCCESS

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome (0 only on success)."""
        return self.outcome.exit_code

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "job_name": self.job_name,
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "failed_step_index": self.failed_step_index,
            "failed_exit_code": self.failed_exit_code,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "steps": [step.to_dict() for step in self.steps],
        }


__all__ = [
    "EXIT_ABORTED",
    "EXIT_CONTAINER_UNAVAILABLE",
    "EXIT_DESCRIPTOR_ERROR",
    "EXIT_STEP_FAILED",
    "EXIT_SUCCESS",
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
]
