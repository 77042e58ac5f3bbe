"""
Sandbox data models.

This module defines Pydantic models for sandbox state as seen by callers,
and the wire shapes exchanged with the control API running inside each
sandbox container.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SandboxStatus(str, Enum):
    """
    Lifecycle status of an agent's sandbox.

    Derived on every read; never cached.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class SandboxInfo(BaseModel):
    """
    Derived view of one agent's sandbox.

    Example:
        >>> info = SandboxInfo(agent_id="a1", status=SandboxStatus.RUNNING, host_port=4001)
        >>> info.is_running
        True
    """

    agent_id: str = Field(description="Agent owning the sandbox")
    status: SandboxStatus = Field(default=SandboxStatus.STOPPED)
    host_port: int | None = Field(
        default=None,
        description="Host port mapped to the control API, when running",
    )

    @property
    def is_running(self) -> bool:
        """Check if the sandbox is running."""
        return self.status == SandboxStatus.RUNNING


class SlashCommandInfo(BaseModel):
    """Slash command advertised by a sandbox session."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    description: str = ""
    argument_hint: str = Field(default="", alias="argumentHint")


class SandboxSession(BaseModel):
    """
    A conversation hosted inside a sandbox.

    The id is assigned by the sandbox, not by this process. Unknown fields
    returned by the control API are kept.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    created_at: str | None = Field(default=None, alias="createdAt")
    last_activity: str | None = Field(default=None, alias="lastActivity")
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    slash_commands: list[SlashCommandInfo] = Field(default_factory=list, alias="slashCommands")


class CreateSessionOptions(BaseModel):
    """
    Body of POST /sessions.

    Serialised with camelCase aliases; the initial message triggers session
    id generation inside the sandbox.
    """

    model_config = ConfigDict(populate_by_name=True)

    initial_message: str = Field(alias="initialMessage")
    metadata: dict[str, Any] | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    available_env_vars: list[str] | None = Field(default=None, alias="availableEnvVars")

    def to_wire(self) -> dict[str, Any]:
        """Render the request body with camelCase keys, omitting unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class StreamEvent(BaseModel):
    """
    One frame received on a session stream.

    Immutable once created. ``content`` is the full JSON frame.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    content: dict[str, Any]
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str

    @classmethod
    def from_frame(cls, frame: dict[str, Any], session_id: str) -> "StreamEvent":
        """
        Build an event from a decoded stream frame.

        Args:
            frame: Decoded JSON object
            session_id: Sandbox session the frame arrived on

        Returns:
            StreamEvent; the frame's own timestamp is used when it parses
        """
        timestamp = datetime.now(timezone.utc)
        raw = frame.get("timestamp")
        if isinstance(raw, str):
            try:
                timestamp = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                pass
        elif isinstance(raw, (int, float)):
            timestamp = datetime.fromtimestamp(raw / 1000, tz=timezone.utc)

        return cls(
            type=str(frame.get("type", "")),
            content=frame,
            timestamp=timestamp,
            session_id=session_id,
        )


class HealthStatus(str, Enum):
    """Outcome level of a health check."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthCheckResult(BaseModel):
    """Result from one sandbox health check."""

    check_name: str
    status: HealthStatus = HealthStatus.OK
    message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
