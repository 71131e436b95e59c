"""
CLI: ``conveyor run`` and ``conveyor validate`` - execute or check a job descriptor.

``run`` exits with the job's outcome code (0 success, 1 step failed,
2 descriptor error, 3 container unavailable, 130 aborted). SIGINT and
SIGTERM abort the run cooperatively: the running step is killed, its
session torn down, and the job reported as aborted.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Callable
from pathlib import Path

import typer
from rich.markup import escape
from rich.tree import Tree

from conveyor.cli.utils import (
    console,
    err_console,
    fail,
    load_settings,
    print_json,
    print_output_line,
    print_result,
)
from conveyor.core.errors import ConfigError, DescriptorError
from conveyor.descriptors.protocol import DescriptorSource
from conveyor.descriptors.yaml_source import DescriptorSpec, YamlDescriptorSource
from conveyor.execution.abort import AbortSignal
from conveyor.execution.coordinator import RunCoordinator
from conveyor.execution.models import (
    EXIT_DESCRIPTOR_ERROR,
    ExecutionResult,
    JobDefinition,
    OutputLine,
    SessionLog,
)
from conveyor.execution.runtimes._types import ContainerRuntime
from conveyor.execution.runtimes.factory import create_runtime

_ABORT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def run(
    descriptor: Path = typer.Argument(..., help="Path to the YAML job descriptor."),
    job: str | None = typer.Option(None, "--job", "-j", help="Run the job with this name."),
    runtime: str | None = typer.Option(
        None, "--runtime", "-r", help="Container runtime: local or docker."
    ),
    workspace: Path | None = typer.Option(
        None, "--workspace", "-w", help="Host directory mounted into docker sessions."
    ),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Write the full step transcript to this file."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level override."),
    json_out: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not echo step output."),
) -> None:
    """Run one job from a descriptor and exit with its outcome code."""
    settings = load_settings(
        quiet=quiet or json_out,
        runtime=runtime,
        workspace=workspace,
        log_level=log_level,
    )

    try:
        source = YamlDescriptorSource.from_file(descriptor, job_name=job)
        container_runtime = create_runtime(settings)
    except (DescriptorError, ConfigError) as exc:
        fail(exc)

    transcript = SessionLog()
    echo = not (quiet or json_out)

    def on_output(line: OutputLine) -> None:
        transcript.append(line)
        if echo:
            print_output_line(line)

    try:
        result = asyncio.run(_run_job(container_runtime, source, on_output))
    except DescriptorError as exc:
        fail(exc)

    if log_file is not None:
        _write_transcript(log_file, transcript)

    if json_out:
        print_json(result.to_dict())
    else:
        print_result(result)

    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


def validate(
    descriptor: Path = typer.Argument(..., help="Path to the YAML job descriptor."),
    json_out: bool = typer.Option(False, "--json", help="Print the parsed jobs as JSON."),
) -> None:
    """Validate a descriptor and print its job plan without running anything."""
    load_settings(quiet=True)
    try:
        spec = DescriptorSpec.from_yaml_file(descriptor)
        jobs = [job_spec.to_job() for job_spec in spec.all_jobs()]
    except DescriptorError as exc:
        fail(exc, code=EXIT_DESCRIPTOR_ERROR)

    if json_out:
        print_json({"jobs": [_plan(job) for job in jobs]})
        return

    for job in jobs:
        tree = Tree(f"[bold]{escape(job.name)}[/bold] [dim]({job.step_count} steps)[/dim]")
        branches = [
            tree.add(f"[cyan]{escape(stage.label)}[/cyan] [dim]{escape(stage.image)}[/dim]")
            for stage in job.stages
        ]
        for index, stage_index, step in job.flattened_steps():
            branches[stage_index].add(f"{index}: {escape(step.command)}")
        console.print(tree)
    console.print(f"[green]OK[/green] {len(jobs)} job(s) valid")


async def _run_job(
    runtime: ContainerRuntime,
    source: DescriptorSource,
    on_output: Callable[[OutputLine], None],
) -> ExecutionResult:
    """Run the next job of ``source`` with SIGINT/SIGTERM wired to abort."""
    abort = AbortSignal()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in _ABORT_SIGNALS:
        # Only possible from the main thread on a Unix event loop.
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(sig, abort.abort, f"Received {sig.name}")
            installed.append(sig)
    try:
        coordinator = RunCoordinator.for_runtime(runtime, on_output=on_output)
        return await coordinator.run(source, abort=abort)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _plan(job: JobDefinition) -> dict[str, object]:
    return {
        "name": job.name,
        "step_count": job.step_count,
        "stages": [
            {
                "display_name": stage.display_name,
                "image": stage.image,
                "env": stage.env,
                "steps": [step.command for step in stage.steps],
            }
            for stage in job.stages
        ],
    }


def _write_transcript(path: Path, transcript: SessionLog) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(transcript.render() + "\n", encoding="utf-8")
    except OSError as exc:
        err_console.print(f"[yellow]Warning[/yellow]: cannot write log file {path}: {escape(str(exc))}")
