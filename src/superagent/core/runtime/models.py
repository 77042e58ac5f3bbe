"""
Runtime data models.

This module defines Pydantic models exchanged between the lifecycle manager
and the container runtime adapters.
"""

from pathlib import Path

from pydantic import BaseModel, Field


class ContainerInfo(BaseModel):
    """
    Result of inspecting one named container.

    "Not running" and "does not exist" are deliberately the same value.
    """

    running: bool = Field(
        default=False,
        description="Whether the runtime reports the container as running",
    )
    host_port: int | None = Field(
        default=None,
        description="Host port bound to the control API port, if any",
    )


class ContainerStats(BaseModel):
    """Resource usage snapshot for a running container."""

    memory_usage_bytes: int = Field(default=0, ge=0)
    memory_limit_bytes: int = Field(default=0, ge=0)
    memory_percent: float = Field(default=0.0, ge=0.0)
    cpu_percent: float = Field(default=0.0, ge=0.0)


class RunnerAvailability(BaseModel):
    """Detailed availability of one runtime tool on this machine."""

    runner: str = Field(description="Runtime name (docker, podman, apple-container)")
    installed: bool = Field(
        default=False,
        description="The CLI is installed and answers a version query",
    )
    running: bool = Field(
        default=False,
        description="The daemon or machine behind the CLI is usable",
    )

    @property
    def available(self) -> bool:
        """Installed and running."""
        return self.installed and self.running


class LaunchSpec(BaseModel):
    """
    Everything needed to launch one sandbox container.

    Built by the lifecycle manager, rendered into a command line by the
    adapter.
    """

    name: str = Field(description="Container name (superagent-<agent_id>)")
    image: str = Field(description="Image tag to launch")
    host_port: int = Field(ge=1, le=65535)
    internal_port: int = Field(ge=1, le=65535)
    workspace_dir: Path = Field(description="Host directory mounted at /workspace")
    cpus: float = Field(gt=0)
    memory: str
    env: dict[str, str] = Field(default_factory=dict)
