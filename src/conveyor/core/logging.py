"""
Conveyor logging - structured logging for job runs.

One entry point configures structlog and the stdlib ``logging`` module
together, so modules that log through ``logging.getLogger(__name__)``
(the runtime adapters) and modules that log through ``get_logger()``
(the engine) end up in the same stream with the same format.

Architecture:
    ::

        configure_logging(level="INFO", format="console")
            │
            ▼
        shared processors (structlog loggers and plain logging records):
          1. add_log_level / add_logger_name
          2. TimeStamper (UTC ISO-8601)
          3. merge_contextvars   (job / stage / step bound per run)
          4. StackInfoRenderer
            │
            ▼
        ProcessorFormatter on the root stderr handler:
          JSONRenderer (json) or ConsoleRenderer (console)

        Usage:
          logger = get_logger(__name__)
          with LogContext(job="build"):
              logger.info("step.finished", step=1, exit_code=0)

Configuration is read from arguments first, then environment:
    - CONVEYOR_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR (default: INFO)
    - CONVEYOR_LOG_FORMAT: json | console (default: console)

Logs go to stderr so that job output on stdout stays clean.

Tags:
    logging, structlog, observability, contextvars, conveyor
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Literal

import structlog
from structlog.types import Processor

_configured = False


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | str | None = None,
    format: Literal["json", "console"] | str | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Should be called once at startup (the CLI does this). Subsequent calls
    are no-ops unless ``force=True``.

    Args:
        level: Log level (overrides CONVEYOR_LOG_LEVEL)
        format: Output format (overrides CONVEYOR_LOG_FORMAT)
        force: Reconfigure even if already configured
    """
    global _configured

    if _configured and not force:
        return

    log_level = (level or os.environ.get("CONVEYOR_LOG_LEVEL", "INFO")).upper()
    log_format = (format or os.environ.get("CONVEYOR_LOG_FORMAT", "console")).lower()

    shared: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Records from plain ``logging`` loggers run through ``shared`` first.
    if log_format == "json":
        render: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        render = [
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        ]
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *render],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, log_level, logging.INFO),
        force=True,
    )
    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(job="build", stage=0):
            logger.info("session.opened")
        # job/stage unbound here
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args: Any) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
