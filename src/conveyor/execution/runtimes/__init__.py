"""Container runtimes for conveyor.

This package contains the container runtime protocol, the shared base
class, and the concrete runtimes that provide sandboxes to the engine.

Architecture:

    .. code-block:: text

        conveyor.execution.runtimes
        ├── __init__.py      ← Public API (this file)
        ├── _types.py        ← ContainerRuntime / ExecProcess protocols
        ├── _base.py         ← BaseContainerRuntime + StubContainerRuntime
        ├── local_process.py ← LocalProcessRuntime (no Docker needed)
        ├── docker.py        ← DockerRuntime (docker CLI)
        └── factory.py       ← create_runtime(settings)

Modules:
    _types        - ContainerRuntime, ExecProcess, RuntimeHealth
    _base         - BaseContainerRuntime with shared lifecycle logic,
                    StubContainerRuntime for tests
    local_process - LocalProcessRuntime, SubprocessExec
    docker        - DockerRuntime
    factory       - create_runtime

Tags:
    conveyor, execution, runtimes, adapter-protocol
"""

from conveyor.execution.runtimes._base import (
    BaseContainerRuntime,
    StubContainerRuntime,
)
from conveyor.execution.runtimes._types import (
    STDERR,
    STDOUT,
    ContainerRuntime,
    ExecProcess,
    RuntimeHealth,
)
from conveyor.execution.runtimes.docker import DockerRuntime
from conveyor.execution.runtimes.factory import RUNTIME_NAMES, create_runtime
from conveyor.execution.runtimes.local_process import LocalProcessRuntime, SubprocessExec

__all__ = [
    # Types & Protocol
    "STDERR",
    "STDOUT",
    "ContainerRuntime",
    "ExecProcess",
    "RuntimeHealth",
    # Base classes
    "BaseContainerRuntime",
    "StubContainerRuntime",
    # Concrete runtimes
    "DockerRuntime",
    "LocalProcessRuntime",
    "SubprocessExec",
    # Factory
    "RUNTIME_NAMES",
    "create_runtime",
]
