"""
Session stream persistence and viewer fan-out.

Example usage:
    from superagent.core.stream import SessionLog, SessionStreamPersister

    persister = SessionStreamPersister(SessionLog(config.sessions_dir()))
    await persister.subscribe_to_session("s1", client, "sandbox-s1", "a1")
    viewer = persister.add_viewer("s1")
"""

from .channel import Viewer, ViewerChannel, ViewerMessage
from .dedup import assistant_text, is_absorbed, last_assistant_text
from .log import SessionLog
from .models import ActiveSessionState, ToolUse
from .persister import (
    CONNECTED_ACCOUNT_REQUEST_TOOL,
    SCHEDULE_TASK_TOOL,
    SECRET_REQUEST_TOOL,
    ScheduleTaskHandler,
    SessionStreamPersister,
    Subscription,
)

__all__ = [
    # Models
    "ActiveSessionState",
    "ToolUse",
    # Persister
    "SessionStreamPersister",
    "Subscription",
    "ScheduleTaskHandler",
    "SECRET_REQUEST_TOOL",
    "CONNECTED_ACCOUNT_REQUEST_TOOL",
    "SCHEDULE_TASK_TOOL",
    # Durable log
    "SessionLog",
    # Viewers
    "Viewer",
    "ViewerChannel",
    "ViewerMessage",
    # Dedup
    "assistant_text",
    "is_absorbed",
    "last_assistant_text",
]
