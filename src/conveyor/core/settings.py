"""Runtime settings for conveyor.

Settings are environment-driven (``CONVEYOR_`` prefix, optional ``.env``
file) and validated at startup. CLI flags override individual fields via
``with_overrides()``, which re-validates the merged values.

Examples:
    >>> from conveyor.core.settings import ConveyorSettings
    >>> settings = ConveyorSettings(runtime="docker", workspace="/src")
    >>> settings.runtime
    'docker'

Tags:
    settings, configuration, pydantic, environment, conveyor
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConveyorSettings(BaseSettings):
    """Settings shared by the CLI and the runtime factory.

    Fields
    ──────
    log_level            : Structlog log level
    log_format           : ``console`` or ``json``
    runtime              : Container runtime used for sessions
    docker_binary        : Docker-compatible CLI (``docker``, ``podman``)
    work_dir             : Base dir for local session working directories
    workspace            : Host dir bind-mounted into docker sessions
    mount_path           : Where ``workspace`` appears inside the container
    shell                : Shell used to interpret each step
    kill_timeout_seconds : Grace period between SIGTERM and SIGKILL
    """

    model_config = SettingsConfigDict(
        env_prefix="CONVEYOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    # ── Runtime ──────────────────────────────────────────────────
    runtime: Literal["local", "docker"] = "local"
    docker_binary: str = "docker"
    work_dir: Path | None = None
    workspace: Path | None = None
    mount_path: str = "/workspace"
    shell: str = "sh"
    kill_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unsupported log level: {value}")
        return level

    def with_overrides(self, **overrides: object) -> ConveyorSettings:
        """Return a copy with every non-None override applied and validated."""
        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        return type(self).model_validate({**self.model_dump(), **updates})


@lru_cache(maxsize=1)
def get_settings() -> ConveyorSettings:
    """Return the process-wide settings (read once)."""
    return ConveyorSettings()


__all__ = ["ConveyorSettings", "get_settings"]
