"""
Root Typer application for the conveyor CLI.

Commands:
    run       Run one job from a descriptor (exit code = outcome)
    validate  Parse and check a descriptor without running it
    health    Check the configured container runtime
"""

from __future__ import annotations

import typer
from typer import Typer

from conveyor.cli.health import health
from conveyor.cli.run import run, validate

app = Typer(
    name="conveyor",
    help="conveyor - run CI jobs step by step in throwaway containers.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from conveyor import __version__

        typer.echo(f"conveyor {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """conveyor CLI - run, validate and health-check CI job descriptors."""


# ── Command registration ─────────────────────────────────────────────────

app.command("run")(run)
app.command("validate")(validate)
app.command("health")(health)
