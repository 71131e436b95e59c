"""
CLI utility helpers - settings loading, output formatting and exit handling.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from conveyor.core.errors import ConfigError, ConveyorError
from conveyor.core.logging import configure_logging
from conveyor.core.settings import ConveyorSettings, get_settings
from conveyor.execution.models import (
    EXIT_DESCRIPTOR_ERROR,
    ExecutionResult,
    OutcomeKind,
    OutputLine,
)

console = Console()
err_console = Console(stderr=True)

_OUTCOME_STYLES = {
    OutcomeKind.SUCCESS: "bold green",
    OutcomeKind.STEP_FAILED: "bold red",
    OutcomeKind.CONTAINER_UNAVAILABLE: "bold magenta",
    OutcomeKind.ABORTED: "bold yellow",
}


# ── Settings ─────────────────────────────────────────────────────────────


def load_settings(*, quiet: bool = False, **overrides: Any) -> ConveyorSettings:
    """Load settings, apply CLI overrides, and configure logging.

    ``quiet`` lowers log output to warnings unless a level was given
    explicitly.
    """
    if quiet and overrides.get("log_level") is None:
        overrides["log_level"] = "WARNING"
    try:
        settings = get_settings().with_overrides(**overrides)
    except ValidationError as exc:
        fail(ConfigError(f"Invalid configuration: {exc}", cause=exc))
    configure_logging(level=settings.log_level, format=settings.log_format, force=True)
    return settings


# ── Errors ───────────────────────────────────────────────────────────────


def fail(error: ConveyorError, *, code: int = EXIT_DESCRIPTOR_ERROR) -> NoReturn:
    """Print a conveyor error and exit with ``code``."""
    err_console.print(
        f"[bold red]Error[/bold red] ({error.category.value}): {escape(error.message)}"
    )
    raise typer.Exit(code=code)


# ── Output ───────────────────────────────────────────────────────────────


def print_output_line(line: OutputLine) -> None:
    """Echo one line of step output as it arrives."""
    style = "red" if line.stream == "stderr" else "dim"
    console.print(
        f"[{style}]{line.step_index:>3} │[/{style}] {escape(line.text)}",
        highlight=False,
        soft_wrap=True,
    )


def print_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def print_result(result: ExecutionResult) -> None:
    """Render a job result as a step table plus a one-line verdict."""
    table = Table(title=result.job_name, show_lines=False, pad_edge=False)
    table.add_column("#", justify="right")
    table.add_column("stage", justify="right")
    table.add_column("command", overflow="fold")
    table.add_column("exit", justify="right")
    table.add_column("time", justify="right")
    for step in result.steps:
        exit_text = "-" if step.exit_code is None else str(step.exit_code)
        table.add_row(
            str(step.index),
            str(step.stage_index),
            escape(step.command),
            exit_text,
            f"{step.duration_seconds:.2f}s",
        )
    if result.steps:
        console.print(table)

    style = _OUTCOME_STYLES[result.outcome]
    verdict = result.outcome.value.upper().replace("_", " ")
    detail = f" - {escape(result.message)}" if result.message else ""
    console.print(
        f"[{style}]{verdict}[/{style}]{detail} "
        f"[dim]({result.duration_seconds:.2f}s, exit {result.exit_code})[/dim]"
    )
