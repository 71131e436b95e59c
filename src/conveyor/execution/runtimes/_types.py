"""Container runtime protocols and types.

This module defines the seam between the engine and whatever actually
provides sandboxes:

- ContainerRuntime: Protocol for provisioning, exec'ing into, and tearing
  down sandboxes
- ExecProcess: Protocol for one running command inside a sandbox
- RuntimeHealth: Runtime reachability check result

Design Notes:
    A runtime never interprets exit codes. ``ExecProcess.wait()`` returns
    whatever the command returned; deciding that non-zero means failure is
    the job runner's business. Runtimes raise ``ContainerUnavailableError``
    only when the sandbox itself cannot be reached.

Architecture:

    .. code-block:: text

        ContainerRuntime (Protocol)
        ├── provision(image, job_name, env) → SessionHandle
        ├── exec(handle, command, env)      → ExecProcess
        │                                      ├── lines()  → AsyncIterator[(stream, text)]
        │                                      ├── wait()   → exit code
        │                                      └── kill()
        ├── teardown(handle)                   (idempotent)
        └── health()                        → RuntimeHealth

Tags:
    conveyor, execution, runtimes, protocol

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from conveyor.execution.models import SessionHandle

STDOUT = "stdout"
STDERR = "stderr"


@runtime_checkable
class ExecProcess(Protocol):
    """A command running inside a sandbox."""

    def lines(self) -> AsyncIterator[tuple[str, str]]:
        """Yield ``(stream, text)`` pairs as the process produces them.

        Exhausts once both streams are closed.
        """
        ...

    async def wait(self) -> int:
        """Wait for the command to exit and return its exit code."""
        ...

    async def kill(self) -> None:
        """Terminate the command. Safe to call after it has exited."""
        ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """Provides sandboxes and runs processes inside them."""

    @property
    def runtime_name(self) -> str:
        ...

    async def provision(
        self,
        image: str,
        *,
        job_name: str = "",
        env: Mapping[str, str] | None = None,
    ) -> SessionHandle:
        ...

    async def exec(
        self,
        handle: SessionHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
    ) -> ExecProcess:
        ...

    async def teardown(self, handle: SessionHandle) -> None:
        ...

    async def health(self) -> RuntimeHealth:
        ...


@dataclass(frozen=True)
class RuntimeHealth:
    """Result of a runtime reachability check."""

    healthy: bool
    runtime: str
    version: str | None = None
    message: str | None = None
    latency_ms: float | None = None


__all__ = [
    "STDERR",
    "STDOUT",
    "ContainerRuntime",
    "ExecProcess",
    "RuntimeHealth",
]
