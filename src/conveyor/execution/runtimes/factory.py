"""Build a container runtime from settings."""

from __future__ import annotations

from conveyor.core.errors import ConfigError
from conveyor.core.settings import ConveyorSettings
from conveyor.execution.runtimes._base import BaseContainerRuntime
from conveyor.execution.runtimes.docker import DockerRuntime
from conveyor.execution.runtimes.local_process import LocalProcessRuntime

RUNTIME_NAMES = ("local", "docker")


def create_runtime(settings: ConveyorSettings, name: str | None = None) -> BaseContainerRuntime:
    """Instantiate the runtime named ``name`` (default: ``settings.runtime``).

    Raises:
        ConfigError: If the name is not a known runtime.
    """
    runtime = (name or settings.runtime).lower()
    if runtime == "local":
        return LocalProcessRuntime(
            work_dir=settings.work_dir,
            shell=settings.shell,
            kill_timeout_seconds=settings.kill_timeout_seconds,
        )
    if runtime == "docker":
        return DockerRuntime(
            docker_binary=settings.docker_binary,
            workspace=settings.workspace,
            mount_path=settings.mount_path,
            shell=settings.shell,
            kill_timeout_seconds=settings.kill_timeout_seconds,
        )
    raise ConfigError(
        f"Unknown runtime {runtime!r}. Available: {', '.join(RUNTIME_NAMES)}"
    ).with_context(runtime=runtime)
