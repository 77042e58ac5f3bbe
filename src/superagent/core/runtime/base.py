"""
Shared implementation for OCI-compatible runtime command-line tools.

Docker and Podman accept the same verbs and Go-template formats, so the
adapter logic lives here and engine subclasses only override the command
name and a few flags. Query methods never raise; lifecycle methods raise
RuntimeCommandError.
"""

import json
import logging
import re

from superagent.core.exceptions import RuntimeCommandError
from superagent.core.process import ProcessResult, run_process, run_process_sync

from .models import ContainerInfo, ContainerStats, LaunchSpec

logger = logging.getLogger(__name__)

# Host side of a published mapping in `ps --format {{.Ports}}`
# e.g. "0.0.0.0:4001->3000/tcp, :::4001->3000/tcp" or a range "0.0.0.0:4000-4002->3000-3002/tcp"
_PORT_MAPPING_RE = re.compile(r":(\d+)(?:-(\d+))?->")

_SIZE_UNITS = {
    "b": 1,
    "kb": 1000,
    "mb": 1000**2,
    "gb": 1000**3,
    "tb": 1000**4,
    "kib": 1024,
    "mib": 1024**2,
    "gib": 1024**3,
    "tib": 1024**4,
}


def parse_size(value: str) -> int:
    """
    Parse a human-readable size as printed by `stats`.

    Args:
        value: Size string (e.g., '1.2GiB', '512MiB', '100kB')

    Returns:
        Size in bytes, 0 if unparseable
    """
    match = re.match(r"^\s*([\d.]+)\s*([a-zA-Z]*)\s*$", value)
    if not match:
        return 0
    number, unit = match.groups()
    try:
        return int(float(number) * _SIZE_UNITS.get(unit.lower() or "b", 1))
    except ValueError:
        return 0


def _parse_percent(value: str) -> float:
    try:
        return float(value.strip().rstrip("%") or 0)
    except ValueError:
        return 0.0


class OCIRuntime:
    """
    Base adapter for OCI-compatible runtime CLIs (Docker, Podman).

    Subclasses set ``runtime_name`` and ``cli_command`` and may override
    ``additional_run_flags`` / ``volume_mount_suffix``.
    """

    runtime_name = "oci"
    cli_command = "docker"

    # Port the control API listens on inside the container; used when
    # parsing inspect output.
    internal_port = 3000

    # Timeouts for query commands (seconds)
    VERSION_TIMEOUT = 10.0
    QUERY_TIMEOUT = 30.0
    LIFECYCLE_TIMEOUT = 120.0

    def __init__(self, internal_port: int | None = None) -> None:
        if internal_port is not None:
            self.internal_port = internal_port

    @classmethod
    def is_eligible(cls) -> bool:
        """Whether this runtime can exist on the current platform at all."""
        return True

    @property
    def name(self) -> str:
        """Runtime name."""
        return self.runtime_name

    @property
    def command(self) -> str:
        """CLI executable driven by this adapter."""
        return self.cli_command

    # =========================================================================
    # Hooks for engine subclasses
    # =========================================================================

    def additional_run_flags(self) -> list[str]:
        """Extra flags appended to `run` (engine specific)."""
        return []

    def volume_mount_suffix(self) -> str:
        """Suffix appended to the workspace volume mount (e.g. ':U')."""
        return ""

    def resource_flags(self, cpus: float, memory: str) -> list[str]:
        """Resource limit flags for `run`."""
        return [f"--cpus={cpus:g}", f"--memory={memory}"]

    # =========================================================================
    # Query methods (total)
    # =========================================================================

    async def is_available(self) -> bool:
        """
        Check whether the CLI responds to a version query.

        Returns:
            True if `<cli> --version` exits successfully
        """
        try:
            result = await self._run(["--version"], timeout=self.VERSION_TIMEOUT)
        except Exception as e:
            logger.debug(f"{self.command} version probe failed: {e}")
            return False
        return result.success

    async def is_running(self) -> bool:
        """
        Check whether the daemon behind the CLI is reachable.

        Returns:
            True if `<cli> info` exits successfully
        """
        try:
            result = await self._run(["info"], timeout=self.QUERY_TIMEOUT)
        except Exception as e:
            logger.debug(f"{self.command} info probe failed: {e}")
            return False
        return result.success

    def inspect_template(self) -> str:
        """Go template printing '<running>|<host port>' for the control port."""
        return (
            "{{.State.Running}}|{{range $p, $conf := .NetworkSettings.Ports}}"
            f'{{{{if eq $p "{self.internal_port}/tcp"}}}}'
            "{{(index $conf 0).HostPort}}{{end}}{{end}}"
        )

    async def inspect(self, container_name: str) -> ContainerInfo:
        """
        Inspect a named container.

        Args:
            container_name: Container to inspect

        Returns:
            ContainerInfo; ContainerInfo() on any failure
        """
        try:
            result = await self._run(
                ["inspect", f"--format={self.inspect_template()}", container_name],
                timeout=self.QUERY_TIMEOUT,
            )
            if not result.success:
                return ContainerInfo()
            return self.parse_inspect_output(result.stdout)
        except Exception as e:
            logger.debug(f"Inspect of {container_name} failed: {e}")
            return ContainerInfo()

    def parse_inspect_output(self, stdout: str) -> ContainerInfo:
        """
        Parse '<running>|<port>' inspect output.

        Args:
            stdout: Output of the templated inspect command

        Returns:
            ContainerInfo parsed from the first line
        """
        line = stdout.strip().splitlines()[0] if stdout.strip() else ""
        # Some shells leave the template's quotes in place
        line = line.strip("'\"")
        running_str, _, port_str = line.partition("|")
        running = running_str.strip().lower() == "true"
        port_str = port_str.strip()
        host_port = int(port_str) if port_str.isdigit() else None
        return ContainerInfo(running=running, host_port=host_port)

    async def list_used_host_ports(self) -> set[int]:
        """
        Scan host ports published by running containers.

        Returns:
            Set of host ports; empty set on failure
        """
        try:
            result = await self._run(
                ["ps", "--format", "{{.Ports}}"],
                timeout=self.QUERY_TIMEOUT,
            )
            if not result.success:
                return set()
            return self.parse_ports_output(result.stdout)
        except Exception as e:
            logger.debug(f"Port scan via {self.command} failed: {e}")
            return set()

    def parse_ports_output(self, stdout: str) -> set[int]:
        """
        Extract host ports from `ps --format {{.Ports}}` output.

        Args:
            stdout: Raw command output

        Returns:
            Set of host ports, with published ranges expanded
        """
        ports: set[int] = set()
        for first, last in _PORT_MAPPING_RE.findall(stdout):
            ports.update(range(int(first), int(last or first) + 1))
        return ports

    async def image_exists(self, image: str) -> bool:
        """
        Check whether an image is present locally.

        Args:
            image: Image tag

        Returns:
            True if `image inspect` succeeds
        """
        try:
            result = await self._run(["image", "inspect", image], timeout=self.QUERY_TIMEOUT)
        except Exception as e:
            logger.debug(f"Image inspect of {image} failed: {e}")
            return False
        return result.success

    async def get_stats(self, container_name: str) -> ContainerStats | None:
        """
        Get resource usage for a running container.

        Args:
            container_name: Container to query

        Returns:
            ContainerStats or None if unavailable
        """
        try:
            result = await self._run(
                ["stats", container_name, "--no-stream", "--format", "{{json .}}"],
                timeout=self.QUERY_TIMEOUT,
            )
            if not result.success or not result.stdout.strip():
                return None
            return self.parse_stats_output(result.stdout)
        except Exception as e:
            logger.debug(f"Stats for {container_name} failed: {e}")
            return None

    def parse_stats_output(self, stdout: str) -> ContainerStats | None:
        """
        Parse one line of `stats --format {{json .}}` output.

        Args:
            stdout: Raw command output

        Returns:
            ContainerStats, or None when the JSON is malformed
        """
        try:
            stats = json.loads(stdout.strip().splitlines()[0])
        except (json.JSONDecodeError, IndexError):
            return None
        if not isinstance(stats, dict):
            return None

        # e.g. "1.2GiB / 4GiB"
        usage_bytes = 0
        limit_bytes = 0
        mem_usage = str(stats.get("MemUsage", ""))
        if " / " in mem_usage:
            used, limit = mem_usage.split(" / ", 1)
            usage_bytes = parse_size(used)
            limit_bytes = parse_size(limit)

        memory_percent = _parse_percent(str(stats.get("MemPerc", "")))
        if not memory_percent and limit_bytes:
            memory_percent = usage_bytes / limit_bytes * 100

        return ContainerStats(
            memory_usage_bytes=usage_bytes,
            memory_limit_bytes=limit_bytes,
            memory_percent=memory_percent,
            cpu_percent=_parse_percent(str(stats.get("CPUPerc", ""))),
        )

    # =========================================================================
    # Lifecycle methods
    # =========================================================================

    async def build_image(self, image: str, context: str) -> None:
        """
        Build an image from a build context directory.

        Args:
            image: Tag to build
            context: Build context directory

        Raises:
            RuntimeCommandError: If the build fails
        """
        args = ["build", "-t", image, context]
        logger.info(f"Building container image {image} from {context}")
        # Builds can take many minutes; no timeout
        result = await self._run(args, timeout=None)
        if not result.success:
            raise RuntimeCommandError(
                f"Image build failed with exit code {result.exit_code}",
                [self.command, *args],
                exit_code=result.exit_code,
                stderr=result.stderr or (result.error or ""),
            )
        logger.info(f"Container image {image} built successfully")

    def build_run_args(self, spec: LaunchSpec) -> list[str]:
        """
        Render a launch specification as `run` arguments.

        Args:
            spec: Launch specification

        Returns:
            Argument vector without the CLI executable
        """
        args = [
            "run",
            "-d",
            "--name",
            spec.name,
            "-p",
            f"{spec.host_port}:{spec.internal_port}",
            "-v",
            f"{spec.workspace_dir}:/workspace{self.volume_mount_suffix()}",
            *self.resource_flags(spec.cpus, spec.memory),
            *self.additional_run_flags(),
        ]
        for key, value in spec.env.items():
            args.extend(["-e", f"{key}={value}"])
        args.append(spec.image)
        return args

    async def run_container(self, spec: LaunchSpec) -> str:
        """
        Launch a detached container.

        Args:
            spec: Launch specification

        Returns:
            Container id printed by the runtime

        Raises:
            RuntimeCommandError: If the launch fails
        """
        args = self.build_run_args(spec)
        result = await self._run(args, timeout=self.LIFECYCLE_TIMEOUT)
        if not result.success:
            raise RuntimeCommandError(
                f"Failed to launch container {spec.name}",
                [self.command, *args[:4]],
                exit_code=result.exit_code,
                stderr=result.stderr or (result.error or ""),
            )
        return result.stdout.strip()

    async def remove_container(self, container_name: str) -> None:
        """Force-remove a container, ignoring 'no such container'."""
        result = await self._run(["rm", "-f", container_name], timeout=self.LIFECYCLE_TIMEOUT)
        if not result.success:
            logger.debug(f"rm -f {container_name} ignored: {result.stderr.strip() or result.error}")

    async def stop_container(self, container_name: str) -> None:
        """Stop then remove a container; already-gone counts as success."""
        for args in (["stop", container_name], ["rm", container_name]):
            result = await self._run(args, timeout=self.LIFECYCLE_TIMEOUT)
            if not result.success:
                logger.debug(
                    f"{args[0]} {container_name} ignored: {result.stderr.strip() or result.error}"
                )

    def stop_container_sync(
        self,
        container_name: str,
        stop_timeout: float,
        remove_timeout: float,
    ) -> None:
        """
        Stop then remove a container synchronously.

        Each call waits at most its timeout. Every error is ignored.
        """
        run_process_sync([self.command, "stop", container_name], timeout=stop_timeout)
        run_process_sync([self.command, "rm", container_name], timeout=remove_timeout)

    # =========================================================================
    # Private helpers
    # =========================================================================

    async def _run(self, args: list[str], timeout: float | None) -> ProcessResult:
        return await run_process([self.command, *args], timeout=timeout)
