"""
Configuration data models for superagent.

These models define the structure of ~/.config/superagent/config.json and
<data_dir>/settings.json, with validation and type safety via Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceLimitsConfig(BaseModel):
    """CPU and memory limits applied to every sandbox container."""

    cpu: float = Field(
        default=1.0,
        gt=0,
        description="Number of CPUs passed as --cpus",
    )
    memory: str = Field(
        default="512m",
        pattern=r"^\d+[bkmgBKMG]?$",
        description="Memory limit passed as --memory (e.g., '512m', '2g')",
    )


class ContainerConfig(BaseModel):
    """
    Container runtime and sandbox launch settings.

    Controls which runtime tool is used, which image is launched, and the
    timing of port allocation and health polling.
    """

    container_runner: str = Field(
        default="docker",
        description="Runtime to use: 'docker', 'podman', 'apple-container' or 'auto'",
    )
    agent_image: str = Field(
        default="superagent-agent:latest",
        description="Sandbox image tag; '{agent_id}' is substituted per agent",
    )
    build_context: str = Field(
        default="./agent-container",
        description="Directory passed to the runtime's build command when the image is missing",
    )
    resource_limits: ResourceLimitsConfig = Field(default_factory=ResourceLimitsConfig)
    base_port: int = Field(
        default=4000,
        ge=1024,
        le=65535,
        description="First host port probed when allocating a sandbox port",
    )
    internal_port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="Port the control API listens on inside the container",
    )
    port_scan_limit: int = Field(
        default=100,
        ge=1,
        description="Number of candidate ports probed before giving up",
    )
    health_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds to wait for /health before the start fails",
    )
    health_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Seconds between /health polls",
    )
    stop_sync_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for the blocking 'stop' call during shutdown",
    )
    remove_sync_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Upper bound for the blocking 'rm' call during shutdown",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for HTTP calls to the sandbox control API",
    )
    stream_max_frame_bytes: int | None = Field(
        default=100 * 1024 * 1024,
        gt=0,
        description="Largest stream frame accepted from a sandbox (None for no limit)",
    )

    def image_for(self, agent_id: str) -> str:
        """Return the image tag for an agent."""
        return self.agent_image.replace("{agent_id}", agent_id)


class AppConfig(BaseModel):
    """Application behaviour around idle sandboxes and viewers."""

    auto_sleep_timeout_minutes: int = Field(
        default=30,
        ge=0,
        description="Stop sandboxes idle for this many minutes (0 disables)",
    )
    idle_poll_interval: float = Field(
        default=60.0,
        gt=0,
        description="Seconds between idle checks",
    )
    viewer_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Pending notifications a viewer may buffer before it is dropped",
    )


class ApiKeysConfig(BaseModel):
    """Credentials injected into sandboxes."""

    anthropic_api_key: Optional[str] = Field(
        default=None,
        description="Saved API key; takes precedence over ANTHROPIC_API_KEY",
    )


class SuperagentConfig(BaseModel):
    """
    Main superagent configuration.

    Merges hardcoded defaults, the user config file, the data-dir settings
    file and SUPERAGENT_* environment variables.

    Example:
        >>> config = SuperagentConfig()
        >>> config.container.base_port
        4000
    """

    model_config = ConfigDict(extra="ignore")

    container: ContainerConfig = Field(default_factory=ContainerConfig)
    app: AppConfig = Field(default_factory=AppConfig)
    api_keys: ApiKeysConfig = Field(default_factory=ApiKeysConfig)
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".superagent",
        description="Root directory for workspaces, session logs and settings",
    )

    def agent_workspace_dir(self, agent_id: str) -> Path:
        """Return the persistent workspace directory mounted at /workspace."""
        return self.data_dir / "agents" / agent_id / "workspace"

    def sessions_dir(self) -> Path:
        """Return the directory holding durable session logs."""
        return self.data_dir / "sessions"
