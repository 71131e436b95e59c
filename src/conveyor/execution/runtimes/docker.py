"""Docker runtime - one long-lived container per session.

Drives containers through the ``docker`` CLI (any Docker-compatible CLI
such as ``podman`` works) rather than a Docker SDK, the same way
``docker run``/``docker exec`` would be typed by hand.

Lifecycle:

    .. code-block:: text

        provision(image)
          └── docker run --detach --name conveyor-<job>-<id>
                         --label conveyor.session=<ref> --label conveyor.job=<job>
                         [--volume <workspace>:<mount>] [--workdir <mount>]
                         [--env K=V ...]
                         --entrypoint sleep <image> infinity
        exec(handle, command)
          ├── docker inspect --format {{.State.Running}}   (unreachable → ContainerUnavailableError)
          └── docker exec [--env K=V ...] <name> <shell> -c <command>
        teardown(handle)
          └── docker rm --force <name>

    Each step is a separate ``docker exec``, so steps share the container's
    filesystem but not shell state, matching one shell line per step.

Best Practices:
    - Teardown is driven by ``ContainerSession.close()``; containers are
      labelled ``conveyor.session`` so leftovers can be found with
      ``docker ps --filter label=conveyor.session``.

Tags:
    conveyor, execution, runtimes, docker, container, subprocess
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from pathlib import Path

from conveyor.core.errors import ContainerUnavailableError
from conveyor.execution.models import SessionHandle
from conveyor.execution.runtimes._base import BaseContainerRuntime
from conveyor.execution.runtimes._types import ExecProcess, RuntimeHealth
from conveyor.execution.runtimes.local_process import SubprocessExec

logger = logging.getLogger(__name__)


def container_name(job_name: str, ref: str) -> str:
    """Docker-safe container name for a session."""
    slug = re.sub(r"[^a-z0-9]+", "-", job_name.lower()).strip("-")[:40] or "job"
    return f"conveyor-{slug}-{ref}"


class DockerRuntime(BaseContainerRuntime):
    """Runs each container stage in a detached container, steps via exec.

    Parameters
    ----------
    docker_binary
        Docker-compatible CLI on PATH.
    workspace
        Host directory bind-mounted into every session container.
    mount_path
        Container path of the mounted workspace; also the working directory.
    shell
        Shell used inside the container for each step.
    label_prefix
        Label prefix for container identification.
    command_timeout
        Seconds allowed for ``run``/``inspect``/``rm`` CLI calls. Image pulls
        happen inside ``docker run`` and count against this limit.
    """

    def __init__(
        self,
        *,
        docker_binary: str = "docker",
        workspace: str | Path | None = None,
        mount_path: str = "/workspace",
        shell: str = "sh",
        label_prefix: str = "conveyor",
        command_timeout: float = 900.0,
        kill_timeout_seconds: float = 5.0,
    ) -> None:
        self.docker_binary = docker_binary
        self.workspace = Path(workspace).resolve() if workspace else None
        self.mount_path = mount_path
        self.shell = shell
        self.label_prefix = label_prefix
        self.command_timeout = command_timeout
        self._kill_timeout = kill_timeout_seconds

    @property
    def runtime_name(self) -> str:
        return "docker"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _do_provision(
        self, image: str, *, job_name: str, env: dict[str, str],
    ) -> SessionHandle:
        ref = uuid.uuid4().hex[:12]
        name = container_name(job_name, ref)

        args = [
            "run", "--detach",
            "--name", name,
            "--label", f"{self.label_prefix}.session={ref}",
            "--label", f"{self.label_prefix}.job={job_name}",
        ]
        if self.workspace:
            args.extend(["--volume", f"{self.workspace}:{self.mount_path}"])
            args.extend(["--workdir", self.mount_path])
        for key, value in env.items():
            args.extend(["--env", f"{key}={value}"])
        args.extend(["--entrypoint", "sleep", image, "infinity"])

        try:
            returncode, stdout, stderr = await self._run_docker(args)
        except asyncio.CancelledError:
            # The daemon may already have created the container.
            logger.info("Provisioning of %s cancelled, removing %s", image, name)
            await asyncio.shield(self._run_docker(["rm", "--force", name]))
            raise
        if returncode != 0:
            # A failed run can still leave a created container behind.
            await self._run_docker(["rm", "--force", name])
            raise ContainerUnavailableError(
                f"docker run failed for {image} (exit {returncode}): {stderr.strip()[-500:]}"
            )

        logger.info("Container %s started from %s", name, image)
        return SessionHandle(
            ref=name,
            image=image,
            runtime=self.runtime_name,
            metadata={"container_id": stdout.strip()[:12], "job_name": job_name},
        )

    async def _do_exec(
        self, handle: SessionHandle, command: str, *, env: dict[str, str],
    ) -> ExecProcess:
        returncode, stdout, _ = await self._run_docker(
            ["inspect", "--format", "{{.State.Running}}", handle.ref],
        )
        if returncode != 0 or stdout.strip() != "true":
            raise ContainerUnavailableError(f"Container {handle.ref} is not running")

        args = [self.docker_binary, "exec"]
        for key, value in env.items():
            args.extend(["--env", f"{key}={value}"])
        args.extend([handle.ref, self.shell, "-c", command])

        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
        return SubprocessExec(process, kill_timeout_seconds=self._kill_timeout)

    async def _do_teardown(self, handle: SessionHandle) -> None:
        returncode, _, stderr = await self._run_docker(["rm", "--force", handle.ref])
        if returncode != 0:
            raise ContainerUnavailableError(
                f"docker rm failed for {handle.ref}: {stderr.strip()}"
            )
        logger.info("Container %s removed", handle.ref)

    async def _do_health(self) -> RuntimeHealth:
        returncode, stdout, stderr = await self._run_docker(
            ["version", "--format", "{{.Server.Version}}"],
        )
        if returncode != 0:
            return RuntimeHealth(
                healthy=False,
                runtime=self.runtime_name,
                message=stderr.strip() or "Docker daemon not reachable",
            )
        return RuntimeHealth(healthy=True, runtime=self.runtime_name, version=stdout.strip())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _run_docker(self, args: list[str]) -> tuple[int, str, str]:
        """Run a docker CLI command to completion."""
        cmd = [self.docker_binary, *args]
        logger.debug("docker exec: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ContainerUnavailableError(
                f"Docker CLI not found: {self.docker_binary}", retryable=False, cause=exc,
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout,
            )
        except asyncio.CancelledError:
            process.kill()
            raise
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise ContainerUnavailableError(
                f"Docker command timed out after {self.command_timeout}s: {' '.join(args)}",
                cause=exc,
            ) from exc
        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )
