"""
Stream pipeline data models.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class ToolUse(BaseModel):
    """A tool call whose input is currently streaming."""

    id: str
    name: str


class ActiveSessionState(BaseModel):
    """
    Per-session activity and streaming bookkeeping.

    ``active`` is true from the moment a user message is sent until the
    sandbox reports a result (or the session is interrupted or its stream
    is lost).
    """

    agent_id: str | None = None
    active: bool = False
    since: datetime | None = Field(
        default=None,
        description="When the session last became active",
    )
    interrupted: bool = Field(
        default=False,
        description="Set by an interrupt; only 'result' frames produce notifications",
    )
    current_text: str = Field(default="", description="Assistant text streamed so far")
    is_streaming: bool = False
    current_tool_use: ToolUse | None = None
    current_tool_input: str = Field(default="", description="Accumulated partial JSON input")

    def clear_streaming(self) -> None:
        """Reset the in-flight text and tool bookkeeping."""
        self.current_text = ""
        self.is_streaming = False
        self.current_tool_use = None
        self.current_tool_input = ""
