"""
Apple container runtime adapter.

Drives the `container` CLI shipped with macOS 26+. Its inspect and list
commands print JSON instead of accepting Go templates, and it has no stats
command, so those three methods are overridden.
"""

import json
import logging
import platform
import sys
from functools import lru_cache
from typing import Any

from .adapter import register_runtime
from .base import OCIRuntime
from .models import ContainerInfo, ContainerStats

logger = logging.getLogger(__name__)

MIN_MACOS_MAJOR_VERSION = 26


@lru_cache(maxsize=1)
def get_macos_major_version() -> int | None:
    """
    Get the macOS major version number.

    Returns:
        Major version (e.g., 26), or None when not running on macOS
    """
    if sys.platform != "darwin":
        return None
    release = platform.mac_ver()[0]
    if not release:
        return None
    try:
        return int(release.split(".")[0])
    except ValueError:
        return None


def _first_record(data: Any) -> dict[str, Any]:
    # inspect prints either one object or a one-element array
    if isinstance(data, list):
        data = data[0] if data else {}
    return data if isinstance(data, dict) else {}


def _published_ports(record: dict[str, Any]) -> list[dict[str, Any]]:
    configuration = record.get("configuration") or {}
    ports = configuration.get("publishedPorts") if isinstance(configuration, dict) else None
    if not isinstance(ports, list):
        return []
    return [p for p in ports if isinstance(p, dict)]


@register_runtime("apple-container")
class AppleContainerRuntime(OCIRuntime):
    """
    Apple container runtime adapter.

    Only eligible on macOS 26 or newer. Build, run, stop and rm share the
    OCI argument shape; inspect, list and stats do not.
    """

    runtime_name = "apple-container"
    cli_command = "container"

    @classmethod
    def is_eligible(cls) -> bool:
        """Apple container exists only on macOS 26+."""
        version = get_macos_major_version()
        return version is not None and version >= MIN_MACOS_MAJOR_VERSION

    async def is_running(self) -> bool:
        """
        Check whether the container system services are up.

        Returns:
            True if `container system status` exits successfully
        """
        try:
            result = await self._run(["system", "status"], timeout=self.QUERY_TIMEOUT)
        except Exception as e:
            logger.debug(f"container system status failed: {e}")
            return False
        return result.success

    async def inspect(self, container_name: str) -> ContainerInfo:
        """
        Inspect a named container via its JSON description.

        Args:
            container_name: Container to inspect

        Returns:
            ContainerInfo; ContainerInfo() on any failure
        """
        try:
            result = await self._run(["inspect", container_name], timeout=self.QUERY_TIMEOUT)
            if not result.success:
                return ContainerInfo()
            return self.parse_inspect_output(result.stdout)
        except Exception as e:
            logger.debug(f"Inspect of {container_name} failed: {e}")
            return ContainerInfo()

    def parse_inspect_output(self, stdout: str) -> ContainerInfo:
        """
        Parse `container inspect` JSON.

        Running state comes from the top-level "status" field; the host port
        from configuration.publishedPorts where containerPort is the control
        API port.

        Args:
            stdout: Raw JSON output

        Returns:
            ContainerInfo; ContainerInfo() when the JSON is malformed
        """
        try:
            record = _first_record(json.loads(stdout))
        except json.JSONDecodeError:
            return ContainerInfo()

        host_port = None
        for mapping in _published_ports(record):
            if mapping.get("containerPort") == self.internal_port and mapping.get("hostPort"):
                host_port = int(mapping["hostPort"])
                break

        return ContainerInfo(running=record.get("status") == "running", host_port=host_port)

    async def list_used_host_ports(self) -> set[int]:
        """
        Scan host ports published by Apple containers.

        Returns:
            Set of host ports; empty set on failure
        """
        try:
            result = await self._run(["list", "--format", "json"], timeout=self.QUERY_TIMEOUT)
            if not result.success:
                return set()
            return self.parse_ports_output(result.stdout)
        except Exception as e:
            logger.debug(f"Port scan via container list failed: {e}")
            return set()

    def parse_ports_output(self, stdout: str) -> set[int]:
        """
        Extract host ports from `container list --format json` output.

        Args:
            stdout: Raw JSON output

        Returns:
            Set of host ports; empty on malformed JSON
        """
        try:
            containers = json.loads(stdout)
        except json.JSONDecodeError:
            return set()
        if not isinstance(containers, list):
            return set()

        ports: set[int] = set()
        for record in containers:
            if not isinstance(record, dict):
                continue
            for mapping in _published_ports(record):
                if mapping.get("hostPort"):
                    ports.add(int(mapping["hostPort"]))
        return ports

    async def get_stats(self, container_name: str) -> ContainerStats | None:
        """Stats are not supported by the container CLI."""
        return None
