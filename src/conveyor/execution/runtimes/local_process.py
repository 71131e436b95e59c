"""Local process runtime - runs steps as local subprocesses.

A ``ContainerRuntime`` that executes step commands as local OS processes
instead of inside containers. A "session" is a private working directory;
the image reference is recorded but otherwise ignored. Lets users without
Docker run and debug descriptors on their own machine.

Architecture:

    .. code-block:: text

        LocalProcessRuntime - Container-Free Execution
        ┌──────────────────────────────────────────────────────────────┐
        │  Session concept          │ Local equivalent                  │
        │  ─────────────────────────┼───────────────────────────────────│
        │  provision(image)         │ mkdir <work_dir>/<ref>            │
        │  exec(command)            │ <shell> -c <command>, cwd=session │
        │  stage env                │ os.environ overlay                │
        │  teardown                 │ rm -r session dir (temp only)     │
        │                           │                                   │
        │  NOT supported locally: image contents, isolation, limits     │
        └──────────────────────────────────────────────────────────────┘

``SubprocessExec`` wraps an ``asyncio.subprocess.Process`` as an
``ExecProcess``; the docker runtime reuses it for ``docker exec``.

Example:
    >>> runtime = LocalProcessRuntime()
    >>> handle = await runtime.provision("ignored:latest")
    >>> proc = await runtime.exec(handle, "echo hello")
    >>> [line async for line in proc.lines()]
    [('stdout', 'hello')]
    >>> await proc.wait()
    0

Tags:
    conveyor, execution, runtimes, local-process, subprocess

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import tempfile
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

from conveyor.core.errors import ContainerUnavailableError
from conveyor.execution.models import SessionHandle
from conveyor.execution.runtimes._base import BaseContainerRuntime
from conveyor.execution.runtimes._types import STDERR, STDOUT, ExecProcess, RuntimeHealth

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def _decode(raw: bytes) -> str:
    return raw.decode(errors="replace").rstrip("\r")


# ---------------------------------------------------------------------------
# Process wrapper
# ---------------------------------------------------------------------------

class SubprocessExec:
    """``ExecProcess`` over an asyncio subprocess with piped stdout/stderr.

    The child must be started in its own session (``start_new_session=True``)
    so ``kill()`` can signal the whole process group, shell children
    included.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        kill_timeout_seconds: float = 5.0,
    ) -> None:
        self._process = process
        self._kill_timeout = kill_timeout_seconds

    @property
    def pid(self) -> int:
        return self._process.pid

    async def lines(self) -> AsyncIterator[tuple[str, str]]:
        queue: asyncio.Queue[tuple[str, str] | None] = asyncio.Queue()

        async def pump(reader: asyncio.StreamReader | None, stream: str) -> None:
            # Split chunks manually so arbitrarily long lines never hit
            # the StreamReader line limit.
            buffer = b""
            try:
                if reader is None:
                    return
                while chunk := await reader.read(_CHUNK_SIZE):
                    buffer += chunk
                    *complete, buffer = buffer.split(b"\n")
                    for raw in complete:
                        await queue.put((stream, _decode(raw)))
                if buffer:
                    await queue.put((stream, _decode(buffer)))
            finally:
                await queue.put(None)

        pumps = [
            asyncio.create_task(pump(self._process.stdout, STDOUT)),
            asyncio.create_task(pump(self._process.stderr, STDERR)),
        ]
        try:
            open_streams = len(pumps)
            while open_streams:
                item = await queue.get()
                if item is None:
                    open_streams -= 1
                    continue
                yield item
        finally:
            for task in pumps:
                if not task.done():
                    task.cancel()

    async def wait(self) -> int:
        return await self._process.wait()

    async def kill(self) -> None:
        """SIGTERM the process group, SIGKILL after the grace period."""
        if self._process.returncode is not None:
            return
        try:
            os.killpg(self._process.pid, signal.SIGTERM)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=self._kill_timeout)
            except TimeoutError:
                os.killpg(self._process.pid, signal.SIGKILL)
                await self._process.wait()
        except ProcessLookupError:
            pass  # Process already gone


# ---------------------------------------------------------------------------
# LocalProcessRuntime
# ---------------------------------------------------------------------------

class LocalProcessRuntime(BaseContainerRuntime):
    """Runs step commands as local shell subprocesses.

    Each session gets its own working directory. Directories created under
    a temp dir are removed on teardown; directories under an explicit
    ``work_dir`` are kept for inspection unless ``keep_work_dirs=False``.
    """

    def __init__(
        self,
        *,
        work_dir: str | Path | None = None,
        shell: str = "sh",
        inherit_env: bool = True,
        kill_timeout_seconds: float = 5.0,
        keep_work_dirs: bool | None = None,
    ) -> None:
        """Initialize the local process runtime.

        Args:
            work_dir: Base directory for session working dirs. If None,
                each session uses a fresh temp directory.
            shell: Shell binary used as ``<shell> -c <command>``.
            inherit_env: If True, steps inherit the current environment
                (with stage env overlaid). If False, only stage env is passed.
            kill_timeout_seconds: Seconds to wait after SIGTERM before
                sending SIGKILL on abort.
            keep_work_dirs: Keep session dirs after teardown. Defaults to
                True when ``work_dir`` is given, False otherwise.
        """
        self._work_dir = Path(work_dir) if work_dir else None
        self._shell = shell
        self._inherit_env = inherit_env
        self._kill_timeout = kill_timeout_seconds
        self._keep_work_dirs = (
            keep_work_dirs if keep_work_dirs is not None else self._work_dir is not None
        )
        self._sessions: dict[str, Path] = {}

    @property
    def runtime_name(self) -> str:
        return "local"

    async def _do_provision(
        self, image: str, *, job_name: str, env: dict[str, str],
    ) -> SessionHandle:
        ref = f"local-{uuid.uuid4().hex[:12]}"
        if self._work_dir:
            cwd = self._work_dir / ref
            cwd.mkdir(parents=True, exist_ok=True)
        else:
            cwd = Path(tempfile.mkdtemp(prefix=f"conveyor-{ref[6:14]}-"))
        self._sessions[ref] = cwd
        logger.debug("Local session %s in %s (image %s not used)", ref, cwd, image)
        return SessionHandle(
            ref=ref,
            image=image,
            runtime=self.runtime_name,
            metadata={"cwd": str(cwd), "job_name": job_name, "env": env},
        )

    async def _do_exec(
        self, handle: SessionHandle, command: str, *, env: dict[str, str],
    ) -> ExecProcess:
        cwd = self._sessions.get(handle.ref)
        if cwd is None:
            raise ContainerUnavailableError(f"No live local session: {handle.ref}")
        try:
            process = await asyncio.create_subprocess_exec(
                self._shell, "-c", command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(handle, env),
                cwd=str(cwd),
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ContainerUnavailableError(
                f"Shell not found: {self._shell} ({exc})", retryable=False, cause=exc,
            ) from exc
        return SubprocessExec(process, kill_timeout_seconds=self._kill_timeout)

    async def _do_teardown(self, handle: SessionHandle) -> None:
        cwd = self._sessions.pop(handle.ref, None)
        if cwd is None or self._keep_work_dirs:
            return
        await asyncio.to_thread(shutil.rmtree, cwd, True)

    async def _do_health(self) -> RuntimeHealth:
        shell = shutil.which(self._shell)
        if shell is None:
            return RuntimeHealth(
                healthy=False,
                runtime=self.runtime_name,
                message=f"Shell not found on PATH: {self._shell}",
            )
        return RuntimeHealth(
            healthy=True,
            runtime=self.runtime_name,
            message=f"Local process execution via {shell}",
        )

    def _build_env(self, handle: SessionHandle, env: dict[str, str]) -> dict[str, str]:
        merged = dict(os.environ) if self._inherit_env else {}
        merged.update(handle.metadata.get("env", {}))
        merged.update(env)
        merged["CONVEYOR_RUNTIME"] = self.runtime_name
        merged["CONVEYOR_IMAGE"] = handle.image
        if handle.metadata.get("job_name"):
            merged["CONVEYOR_JOB_NAME"] = handle.metadata["job_name"]
        return merged
