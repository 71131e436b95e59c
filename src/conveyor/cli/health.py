"""
CLI: ``conveyor health`` - check that the container runtime is reachable.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict

import typer

from conveyor.cli.utils import console, err_console, fail, load_settings, print_json
from conveyor.core.errors import ConfigError
from conveyor.execution.models import EXIT_CONTAINER_UNAVAILABLE
from conveyor.execution.runtimes.factory import create_runtime


def health(
    runtime: str | None = typer.Option(
        None, "--runtime", "-r", help="Container runtime: local or docker."
    ),
    json_out: bool = typer.Option(False, "--json", help="Print the health report as JSON."),
) -> None:
    """Check the container runtime; exits 3 when it is unreachable."""
    settings = load_settings(quiet=True, runtime=runtime)
    try:
        container_runtime = create_runtime(settings)
    except ConfigError as exc:
        fail(exc)

    report = asyncio.run(container_runtime.health())

    if json_out:
        print_json(asdict(report))
    elif report.healthy:
        version = f" {report.version}" if report.version else ""
        latency = f" [dim]({report.latency_ms:.0f} ms)[/dim]" if report.latency_ms is not None else ""
        console.print(f"[green]healthy[/green] {report.runtime}{version}{latency}")
    else:
        err_console.print(f"[red]unhealthy[/red] {report.runtime}: {report.message or 'unreachable'}")

    if not report.healthy:
        raise typer.Exit(code=EXIT_CONTAINER_UNAVAILABLE)
