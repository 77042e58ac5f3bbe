"""
Session stream persister.

Subscribes to a running sandbox's live event stream for a session and, for
every frame in arrival order:

1. appends the frame to the session's durable JSONL log,
2. publishes {"type": "event", "event": frame} to the session's viewers,
3. inspects the frame for markers and publishes derived notifications
   (stream_start, stream_delta, tool_use_*, tool_result, session_idle, ...).

Viewers attach to the persister, never to the sandbox. A single reader task
per subscription does all three steps, so order is strict per session.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from superagent.core.exceptions import SandboxError, StreamError
from superagent.core.sandbox import SandboxClient, StreamConnection

from .channel import Viewer, ViewerChannel, ViewerMessage
from .dedup import assistant_text, is_absorbed, last_assistant_text
from .log import SessionLog
from .models import ActiveSessionState, ToolUse

logger = logging.getLogger(__name__)

SECRET_REQUEST_TOOL = "mcp__user-input__request_secret"
CONNECTED_ACCOUNT_REQUEST_TOOL = "mcp__user-input__request_connected_account"
SCHEDULE_TASK_TOOL = "mcp__user-input__schedule_task"

ERROR_RESULT_SUBTYPES = frozenset({"error", "error_during_execution"})

# Persists a schedule_task request and returns the new task id
ScheduleTaskHandler = Callable[[dict[str, Any]], Awaitable[str | None]]

ViewerCallback = Callable[[ViewerMessage], Any]


class Subscription:
    """The live link between one session and its sandbox stream."""

    def __init__(
        self,
        session_id: str,
        sandbox_session_id: str,
        agent_id: str | None,
        connection: StreamConnection,
    ) -> None:
        self.session_id = session_id
        self.sandbox_session_id = sandbox_session_id
        self.agent_id = agent_id
        self.connection = connection
        self.task: asyncio.Task[None] | None = None


class SessionStreamPersister:
    """
    Persists session streams and fans them out to live viewers.

    Example:
        >>> persister = SessionStreamPersister(SessionLog(config.sessions_dir()))
        >>> viewer = persister.add_viewer("s1")
        >>> await persister.subscribe_to_session("s1", client, "sandbox-s1", "a1")
        >>> persister.mark_session_active("s1", "a1")
        >>> async for message in viewer:
        ...     print(message["type"])
    """

    def __init__(
        self,
        session_log: SessionLog,
        *,
        viewer_queue_size: int = 1000,
        schedule_task_handler: ScheduleTaskHandler | None = None,
    ) -> None:
        """
        Initialize the persister.

        Args:
            session_log: Durable log store
            viewer_queue_size: Messages a viewer may buffer before it is dropped
            schedule_task_handler: Optional coroutine persisting schedule_task requests
        """
        self.session_log = session_log
        self.viewer_queue_size = viewer_queue_size
        self.schedule_task_handler = schedule_task_handler

        self._states: dict[str, ActiveSessionState] = {}
        self._subscriptions: dict[str, Subscription] = {}
        # Per-session lock plus the number of holders and waiters; dropped at zero
        self._subscribe_locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._channels: dict[str, ViewerChannel] = {}
        self._global_channel = ViewerChannel("global", viewer_queue_size)
        self._last_assistant_text: dict[str, str] = {}
        self._background: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def subscribe_to_session(
        self,
        session_id: str,
        client: SandboxClient,
        sandbox_session_id: str,
        agent_id: str | None = None,
    ) -> None:
        """
        Start persisting and fanning out a session's stream.

        Any existing subscription for the session is torn down first;
        viewers already attached stay attached.

        Args:
            session_id: Session id used for the log and the viewer channel
            client: Facade of the sandbox hosting the session
            sandbox_session_id: Session id assigned by the sandbox
            agent_id: Agent owning the session

        Raises:
            StreamError: If the stream connection cannot be opened
        """
        async with self._session_lock(session_id):
            await self._teardown(session_id, close_viewers=False)
            self._states[session_id] = ActiveSessionState(agent_id=agent_id)

            try:
                connection = await client.open_stream(sandbox_session_id)
            except SandboxError as e:
                self._states.pop(session_id, None)
                raise StreamError(
                    f"Failed to subscribe to session {session_id}: {e}",
                    session_id=session_id,
                    agent_id=agent_id,
                ) from e

            subscription = Subscription(session_id, sandbox_session_id, agent_id, connection)
            subscription.task = asyncio.create_task(self._read_stream(subscription))
            self._subscriptions[session_id] = subscription
            logger.info(f"Subscribed to session {session_id} (sandbox session {sandbox_session_id})")

    async def unsubscribe_from_session(self, session_id: str) -> None:
        """
        Stop a session's subscription and close its viewers.

        Safe when no subscription exists. Waits for an in-flight subscribe
        of the same session, so it never leaves a subscription behind.
        """
        async with self._session_lock(session_id):
            await self._teardown(session_id, close_viewers=True)
            self._last_assistant_text.pop(session_id, None)

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock, users = self._subscribe_locks.get(session_id, (asyncio.Lock(), 0))
        self._subscribe_locks[session_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._subscribe_locks[session_id]
            if users == 1:
                del self._subscribe_locks[session_id]
            else:
                self._subscribe_locks[session_id] = (lock, users - 1)

    async def _teardown(self, session_id: str, *, close_viewers: bool) -> None:
        subscription = self._subscriptions.pop(session_id, None)
        if subscription is not None:
            task = subscription.task
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            await subscription.connection.close()
            self.session_log.close_session(session_id)
            logger.info(f"Unsubscribed from session {session_id}")

        self._states.pop(session_id, None)

        if close_viewers:
            channel = self._channels.pop(session_id, None)
            if channel is not None:
                channel.close()

    def is_subscribed(self, session_id: str) -> bool:
        """Whether the session has a live subscription."""
        return session_id in self._subscriptions

    async def _read_stream(self, subscription: Subscription) -> None:
        session_id = subscription.session_id
        try:
            async for frame in subscription.connection:
                self._handle_frame(session_id, frame)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Stream reader for session {session_id} failed")
        finally:
            # Still registered means the transport went away, not an unsubscribe
            if self._subscriptions.get(session_id) is subscription:
                del self._subscriptions[session_id]
                self.session_log.close_session(session_id)
                logger.warning(f"Stream for session {session_id} ended")
                self._clear_active(session_id)

    def _clear_active(self, session_id: str) -> None:
        state = self._states.get(session_id)
        if state is None:
            return
        was_active = state.active
        state.active = False
        state.clear_streaming()
        if was_active:
            self._publish(session_id, {"type": "session_idle", "isActive": False})
            self._publish_activity(session_id, state)

    # =========================================================================
    # Frame handling
    # =========================================================================

    def _handle_frame(self, session_id: str, frame: dict[str, Any]) -> None:
        try:
            self.session_log.append(session_id, frame)
        except (OSError, ValueError):
            logger.exception(f"Failed to append frame to log for session {session_id}")

        text = assistant_text(frame)
        if text is not None:
            self._last_assistant_text[session_id] = text

        self._publish(session_id, {"type": "event", "event": frame})

        state = self._states.get(session_id)
        if state is None:
            return

        frame_type = frame.get("type")
        # After an interrupt only 'result' means the sandbox actually stopped
        if state.interrupted and frame_type != "result":
            return

        if frame_type == "assistant":
            state.current_text = ""
            self._publish(session_id, {"type": "messages_updated"})
        elif frame_type == "user":
            self._handle_tool_results(session_id, frame)
        elif frame_type == "system":
            if frame.get("subtype") == "init":
                self._publish(session_id, {"type": "stream_start"})
        elif frame_type == "result":
            self._handle_result(session_id, frame, state)
        elif isinstance(frame.get("event"), dict):
            # 'stream_event' wrapper, or a bare event without one
            self._handle_stream_event(session_id, frame["event"], state)

    def _handle_result(
        self,
        session_id: str,
        frame: dict[str, Any],
        state: ActiveSessionState,
    ) -> None:
        was_active = state.active
        state.active = False
        state.clear_streaming()

        if frame.get("subtype") in ERROR_RESULT_SUBTYPES:
            error = frame.get("error") or frame.get("message") or "An error occurred during execution"
            logger.error(f"Session {session_id} error: {error}")
            self._publish(session_id, {"type": "session_error", "error": error, "isActive": False})
        else:
            self._publish(session_id, {"type": "session_idle", "isActive": False})

        if was_active:
            self._publish_activity(session_id, state)

    def _handle_stream_event(
        self,
        session_id: str,
        event: dict[str, Any],
        state: ActiveSessionState,
    ) -> None:
        event_type = event.get("type")

        if event_type == "message_start":
            state.current_text = ""
            state.is_streaming = True
            state.current_tool_use = None
            self._publish(session_id, {"type": "stream_start"})

        elif event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.current_tool_use = ToolUse(id=str(block.get("id", "")), name=str(block.get("name", "")))
                state.current_tool_input = ""
                self._publish(
                    session_id,
                    {
                        "type": "tool_use_start",
                        "toolId": block.get("id"),
                        "toolName": block.get("name"),
                        "partialInput": "",
                    },
                )

        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                state.current_text += delta["text"]
                self._publish(session_id, {"type": "stream_delta", "text": delta["text"]})
            elif delta.get("type") == "input_json_delta":
                state.current_tool_input += delta.get("partial_json") or ""
                tool = state.current_tool_use
                self._publish(
                    session_id,
                    {
                        "type": "tool_use_streaming",
                        "toolId": tool.id if tool else None,
                        "toolName": tool.name if tool else None,
                        "partialInput": state.current_tool_input,
                    },
                )

        elif event_type == "content_block_stop":
            tool = state.current_tool_use
            if tool is not None:
                self._handle_user_input_tool(session_id, tool, state.current_tool_input, state.agent_id)
                self._publish(
                    session_id,
                    {"type": "tool_use_ready", "toolId": tool.id, "toolName": tool.name},
                )
                state.current_tool_use = None
                state.current_tool_input = ""

        elif event_type == "message_stop":
            state.is_streaming = False
            state.current_tool_use = None
            state.current_tool_input = ""

    def _handle_tool_results(self, session_id: str, frame: dict[str, Any]) -> None:
        message = frame.get("message")
        blocks = message.get("content") if isinstance(message, dict) else None
        if not isinstance(blocks, list):
            return
        for block in blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "tool_result" and block.get("tool_use_id"):
                self._publish(
                    session_id,
                    {
                        "type": "tool_result",
                        "toolUseId": block["tool_use_id"],
                        "result": block.get("content"),
                        "isError": bool(block.get("is_error", False)),
                    },
                )

    def _handle_user_input_tool(
        self,
        session_id: str,
        tool: ToolUse,
        raw_input: str,
        agent_id: str | None,
    ) -> None:
        if tool.name not in (SECRET_REQUEST_TOOL, CONNECTED_ACCOUNT_REQUEST_TOOL, SCHEDULE_TASK_TOOL):
            return

        try:
            tool_input = json.loads(raw_input)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse input of {tool.name} in session {session_id}: {raw_input!r}")
            return
        if not isinstance(tool_input, dict):
            logger.warning(f"Input of {tool.name} in session {session_id} is not an object")
            return

        if tool.name == SECRET_REQUEST_TOOL:
            if not tool_input.get("secretName"):
                logger.warning(f"Secret request in session {session_id} missing secretName")
                return
            self._publish(
                session_id,
                {
                    "type": "secret_request",
                    "toolUseId": tool.id,
                    "secretName": tool_input["secretName"],
                    "reason": tool_input.get("reason"),
                    "agentSlug": agent_id,
                },
            )

        elif tool.name == CONNECTED_ACCOUNT_REQUEST_TOOL:
            toolkit = tool_input.get("toolkit")
            if not toolkit or not isinstance(toolkit, str):
                logger.warning(f"Connected account request in session {session_id} missing toolkit")
                return
            self._publish(
                session_id,
                {
                    "type": "connected_account_request",
                    "toolUseId": tool.id,
                    "toolkit": toolkit.lower(),
                    "reason": tool_input.get("reason"),
                    "agentSlug": agent_id,
                },
            )

        else:
            self._handle_schedule_task(session_id, tool, tool_input, agent_id)

    def _handle_schedule_task(
        self,
        session_id: str,
        tool: ToolUse,
        tool_input: dict[str, Any],
        agent_id: str | None,
    ) -> None:
        required = ("scheduleType", "scheduleExpression", "prompt")
        if not all(tool_input.get(key) for key in required):
            logger.warning(f"Schedule task request in session {session_id} missing required fields")
            return

        request = {
            "type": "schedule_task_request",
            "toolUseId": tool.id,
            "scheduleType": tool_input["scheduleType"],
            "scheduleExpression": tool_input["scheduleExpression"],
            "prompt": tool_input["prompt"],
            "name": tool_input.get("name"),
            "agentSlug": agent_id,
            "sessionId": session_id,
        }
        self._publish(session_id, request)

        handler = self.schedule_task_handler
        if handler is None:
            return
        if not agent_id:
            logger.warning(f"Schedule task request in session {session_id} has no agent")
            return
        self._spawn(self._create_scheduled_task(session_id, request, handler))

    async def _create_scheduled_task(
        self,
        session_id: str,
        request: dict[str, Any],
        handler: ScheduleTaskHandler,
    ) -> None:
        try:
            task_id = await handler(request)
        except Exception:
            logger.exception(f"Failed to create scheduled task for session {session_id}")
            return
        logger.info(f"Scheduled task {task_id} created from session {session_id}")
        self._publish(
            session_id,
            {
                "type": "scheduled_task_created",
                "toolUseId": request["toolUseId"],
                "taskId": task_id,
                "scheduleType": request["scheduleType"],
                "scheduleExpression": request["scheduleExpression"],
                "name": request["name"],
                "agentSlug": request["agentSlug"],
            },
        )

    # =========================================================================
    # Activity
    # =========================================================================

    def mark_session_active(self, session_id: str, agent_id: str | None = None) -> None:
        """
        Mark a session as producing output (a user message was sent).

        Clears a previous interrupt.
        """
        state = self._states.setdefault(session_id, ActiveSessionState(agent_id=agent_id))
        was_active = state.active
        state.active = True
        state.interrupted = False
        state.since = datetime.now(timezone.utc)
        if agent_id:
            state.agent_id = agent_id

        self._publish(session_id, {"type": "session_active", "isActive": True})
        if not was_active:
            self._publish_activity(session_id, state)

    def mark_session_interrupted(self, session_id: str) -> None:
        """
        Mark a session as interrupted by the user.

        Until the next mark_session_active, only 'result' frames produce
        notifications. Viewers are told the session is idle immediately.
        """
        state = self._states.get(session_id)
        was_active = False
        if state is not None:
            # Flag first so frames already in flight are ignored
            state.interrupted = True
            was_active = state.active
            state.active = False
            state.clear_streaming()

        self._publish(session_id, {"type": "session_idle", "isActive": False})
        if state is not None and was_active:
            self._publish_activity(session_id, state)

    def is_session_active(self, session_id: str) -> bool:
        """Whether the session is currently producing output."""
        state = self._states.get(session_id)
        return state.active if state is not None else False

    def get_state(self, session_id: str) -> ActiveSessionState | None:
        """Current state of a session, if tracked."""
        return self._states.get(session_id)

    def active_sessions(self) -> list[str]:
        """Ids of all active sessions."""
        return [session_id for session_id, state in self._states.items() if state.active]

    def has_active_sessions_for_agent(self, agent_id: str) -> bool:
        """Whether any active session belongs to the agent."""
        return any(state.active and state.agent_id == agent_id for state in self._states.values())

    def streaming_snapshot(self, session_id: str) -> str:
        """
        In-flight assistant text a newly attached viewer should render.

        Returns:
            The streaming text, or '' when nothing streams or the text is
            already absorbed into the durable log
        """
        state = self._states.get(session_id)
        if state is None or not state.is_streaming or not state.current_text:
            return ""

        persisted = self._last_assistant_text.get(session_id)
        if persisted is None:
            persisted = last_assistant_text(self.session_log.iter_frames(session_id))
            if persisted is not None:
                self._last_assistant_text[session_id] = persisted

        if is_absorbed(state.current_text, persisted):
            return ""
        return state.current_text

    def _publish_activity(self, session_id: str, state: ActiveSessionState) -> None:
        self.broadcast_global(
            {
                "type": "session_active_changed",
                "sessionId": session_id,
                "agentId": state.agent_id,
                "isActive": state.active,
            }
        )

    # =========================================================================
    # Viewers
    # =========================================================================

    def add_viewer(self, session_id: str) -> Viewer:
        """Attach a viewer to one session's notifications."""
        channel = self._channels.get(session_id)
        if channel is None:
            channel = ViewerChannel(f"session {session_id}", self.viewer_queue_size)
            self._channels[session_id] = channel
        return channel.add_viewer()

    def add_global_viewer(self) -> Viewer:
        """Attach a viewer to global notifications (status and activity changes)."""
        return self._global_channel.add_viewer()

    def attach_viewer(self, session_id: str | None, callback: ViewerCallback) -> Viewer:
        """
        Drain a new viewer into a callback from its own task.

        Args:
            session_id: Session to watch, or None for global notifications
            callback: Called with each message; may be a coroutine function

        Returns:
            The viewer; close it to stop the callback
        """
        viewer = self.add_global_viewer() if session_id is None else self.add_viewer(session_id)
        self._spawn(self._drain(viewer, callback))
        return viewer

    async def _drain(self, viewer: Viewer, callback: ViewerCallback) -> None:
        async for message in viewer:
            try:
                result = callback(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Viewer callback failed; detaching viewer")
                viewer.close(discard_pending=True)
                return

    def viewer_count(self, session_id: str) -> int:
        """Number of viewers attached to a session."""
        channel = self._channels.get(session_id)
        return len(channel) if channel is not None else 0

    def broadcast_session_update(self, session_id: str) -> None:
        """Tell a session's viewers its metadata changed (e.g. renamed)."""
        self._publish(session_id, {"type": "session_updated"})

    def broadcast_global(self, event: dict[str, Any]) -> None:
        """Publish an event to every global viewer."""
        logger.debug(f"Broadcasting global event {event.get('type')} to {len(self._global_channel)} viewers")
        self._global_channel.publish(event)

    def _publish(self, session_id: str, message: ViewerMessage) -> None:
        channel = self._channels.get(session_id)
        if channel is None:
            return
        logger.debug(f"Publishing {message.get('type')} to session {session_id} ({len(channel)} viewers)")
        channel.publish(message)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> None:
        """Unsubscribe every session, close every viewer and the log store."""
        for session_id in list(self._subscriptions):
            await self.unsubscribe_from_session(session_id)
        for session_id in list(self._channels):
            self._channels.pop(session_id).close()
        self._global_channel.close()

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self.session_log.close()
