"""
Conveyor core - errors, logging and settings shared by every layer.
"""

from conveyor.core.errors import (
    ConfigError,
    ContainerUnavailableError,
    ConveyorError,
    DescriptorError,
    ErrorCategory,
    ErrorContext,
    SessionBusyError,
    SessionClosedError,
    SessionError,
    categorize_error,
    is_retryable,
)
from conveyor.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "ConfigError",
    "ContainerUnavailableError",
    "ConveyorError",
    "DescriptorError",
    "ErrorCategory",
    "ErrorContext",
    "SessionBusyError",
    "SessionClosedError",
    "SessionError",
    "categorize_error",
    "is_retryable",
    "LogContext",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
]
