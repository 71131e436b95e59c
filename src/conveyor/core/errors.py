"""
Structured error types for conveyor.

Every exception the engine raises carries a category and an explicit
retryable flag so callers can decide recovery without parsing messages.
Step failures and aborts are NOT exceptions: the job runner returns them
as typed outcomes (see ``conveyor.execution.models.OutcomeKind``). The
exceptions below cover the seams where work cannot proceed at all.

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        ConveyorError                          │
        │          (category, retryable, context, cause)                │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ContainerUnavailableError   DescriptorError    ConfigError   │
        │  (RUNTIME, retryable)        (DESCRIPTOR)       (CONFIG)      │
        │                                                               │
        │  SessionError                                                 │
        │  ├── SessionClosedError                                       │
        │  └── SessionBusyError        (INTERNAL)                       │
        │                                                               │
        └──────────────────────────────────────────────────────────────┘

Manifesto:
    - **Typed errors:** Different exception types for different seams
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **No retries here:** The engine reports; a higher layer decides
    - **Error chaining:** Original exceptions are preserved as ``cause``

Tags:
    errors, exceptions, retry, classification, conveyor

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories for classification and routing.

    Attributes:
        RUNTIME: Container runtime unreachable, image cannot be provisioned
        DESCRIPTOR: Job descriptor missing, unparseable or invalid
        CONFIG: Invalid settings or CLI options
        INTERNAL: Engine misuse or unexpected state (bugs)
        UNKNOWN: Uncategorized errors
    """

    RUNTIME = "RUNTIME"
    DESCRIPTOR = "DESCRIPTOR"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    The named fields cover what the engine knows at the point of failure;
    anything else goes into ``metadata``.
    """

    job: str | None = None
    stage: int | None = None
    step: int | None = None
    image: str | None = None
    runtime: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Return non-empty fields only."""
        result = {
            k: v
            for k, v in {
                "job": self.job,
                "stage": self.stage,
                "step": self.step,
                "image": self.image,
                "runtime": self.runtime,
            }.items()
            if v is not None
        }
        if self.metadata:
            result["metadata"] = dict(self.metadata)
        return result


class ConveyorError(Exception):
    """
    Base exception for all conveyor errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Example:
        >>> err = ConveyorError("boom", category=ErrorCategory.INTERNAL)
        >>> err.to_dict()["category"]
        'INTERNAL'
    """

    default_category: ErrorCategory = ErrorCategory.UNKNOWN
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ConveyorError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ContainerUnavailableError("pull failed").with_context(
                image="alpine:3", runtime="docker"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


class ContainerUnavailableError(ConveyorError):
    """
    The sandbox could not be provisioned or stopped responding.

    Retryable by a higher layer; the engine itself never retries.
    """

    default_category = ErrorCategory.RUNTIME
    default_retryable = True


# =============================================================================
# DESCRIPTORS & CONFIGURATION
# =============================================================================


class DescriptorError(ConveyorError):
    """Job descriptor is missing, malformed, or violates an invariant."""

    default_category = ErrorCategory.DESCRIPTOR
    default_retryable = False


class ConfigError(ConveyorError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# SESSION MISUSE
# =============================================================================


class SessionError(ConveyorError):
    """Container session used outside its contract."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


class SessionClosedError(SessionError):
    """A step was submitted to a session that has already been closed."""


class SessionBusyError(SessionError):
    """A step was submitted while another step is still running."""


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ConveyorError):
        return error.retryable
    return isinstance(error, (ConnectionError, BrokenPipeError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ConveyorError):
        return error.category
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.RUNTIME
    if isinstance(error, ValueError):
        return ErrorCategory.DESCRIPTOR
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ConveyorError",
    "ContainerUnavailableError",
    "DescriptorError",
    "ConfigError",
    "SessionError",
    "SessionClosedError",
    "SessionBusyError",
    "is_retryable",
    "categorize_error",
]
