"""
Docker runtime adapter.

Drives the `docker` CLI. On Linux, `host.docker.internal` does not resolve
by default, so the launch maps it to the host gateway.
"""

import sys

from .adapter import register_runtime
from .base import OCIRuntime


@register_runtime("docker")
class DockerRuntime(OCIRuntime):
    """
    Docker runtime adapter.

    Uses the shared OCI command set:
    - `docker inspect --format=...` for running state and host port
    - `docker ps --format {{.Ports}}` for used host ports
    - `docker stats --no-stream` for memory and CPU usage
    """

    runtime_name = "docker"
    cli_command = "docker"

    def additional_run_flags(self) -> list[str]:
        """Map host.docker.internal to the host gateway on Linux."""
        if sys.platform.startswith("linux"):
            return ["--add-host=host.docker.internal:host-gateway"]
        return []
