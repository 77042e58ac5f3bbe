"""
Facade over one sandbox's control API.

SandboxClient speaks HTTP to http://localhost:<host_port> for session
management and opens WebSocket stream connections for live session output.
The host port is looked up through the runtime adapter on every call, so a
sandbox that stopped behind our back is reported as not running instead of
producing a confusing connection error.
"""

import asyncio
import functools
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from superagent.core.exceptions import (
    SandboxNotRunningError,
    SandboxRequestError,
    SandboxUnreachableError,
)
from superagent.core.runtime import ContainerStats, RuntimeAdapter

from .models import CreateSessionOptions, SandboxSession

logger = logging.getLogger(__name__)

StreamConnector = Callable[[str], Awaitable[ClientConnection]]

# Tool results carrying file contents or images routinely exceed websockets' 1 MiB default
DEFAULT_MAX_FRAME_BYTES = 100 * 1024 * 1024


class StreamConnection:
    """
    One live stream of frames for a sandbox session.

    Iterating yields decoded JSON objects in arrival order. Frames that are
    not JSON objects are logged and dropped. Iteration ends when the
    connection closes, whichever side closed it.
    """

    def __init__(
        self,
        session_id: str,
        websocket: ClientConnection,
        on_close: Callable[["StreamConnection"], None] | None = None,
    ) -> None:
        self.session_id = session_id
        self._websocket = websocket
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether close() was called or the transport ended."""
        return self._closed

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._frames()

    async def _frames(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async for message in self._websocket:
                text = message.decode("utf-8", errors="replace") if isinstance(message, bytes) else message
                try:
                    frame = json.loads(text)
                except json.JSONDecodeError as e:
                    logger.warning(f"Dropping malformed frame on session {self.session_id}: {e}")
                    continue
                if not isinstance(frame, dict):
                    logger.warning(f"Dropping non-object frame on session {self.session_id}")
                    continue
                yield frame
        except ConnectionClosed as e:
            logger.debug(f"Stream for session {self.session_id} closed: {e}")
        finally:
            self._mark_closed()

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._mark_closed()
        try:
            await self._websocket.close()
        except Exception as e:
            logger.debug(f"Error closing stream for session {self.session_id}: {e}")

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close(self)


class SandboxClient:
    """
    Client for one agent's sandbox control API.

    Every call checks the container just in time through the runtime
    adapter. Stream connections opened here are tracked so the lifecycle
    manager can close them before stopping the container.

    Example:
        >>> client = await manager.ensure_running("a1")
        >>> session = await client.create_session(
        ...     CreateSessionOptions(initial_message="hello")
        ... )
        >>> await client.send_message(session.id, "more")
    """

    def __init__(
        self,
        agent_id: str,
        runtime: RuntimeAdapter,
        container_name: str,
        *,
        request_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        stream_connector: StreamConnector | None = None,
        max_frame_bytes: int | None = DEFAULT_MAX_FRAME_BYTES,
    ) -> None:
        """
        Initialize the client.

        Args:
            agent_id: Agent owning the sandbox
            runtime: Adapter used for just-in-time running checks and stats
            container_name: Runtime name of the sandbox container
            request_timeout: Timeout for HTTP calls (seconds)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            stream_connector: Optional coroutine opening a WebSocket by URL
            max_frame_bytes: Largest stream frame accepted by the default connector
                (None for no limit)
        """
        self.agent_id = agent_id
        self.runtime = runtime
        self.container_name = container_name
        self.request_timeout = request_timeout
        self._transport = transport
        self._stream_connector: StreamConnector = stream_connector or functools.partial(
            connect, max_size=max_frame_bytes
        )
        self._streams: dict[str, StreamConnection] = {}

    # =========================================================================
    # Addressing
    # =========================================================================

    async def get_host_port(self) -> int:
        """
        Look up the control API's host port.

        Returns:
            Host port of the running sandbox

        Raises:
            SandboxNotRunningError: If the container is not running
        """
        info = await self.runtime.inspect(self.container_name)
        if not info.running or info.host_port is None:
            raise SandboxNotRunningError(self.agent_id)
        return info.host_port

    @staticmethod
    def base_url(port: int) -> str:
        """Base URL of the control API on the given host port."""
        return f"http://localhost:{port}"

    @staticmethod
    def stream_url(port: int, session_id: str) -> str:
        """WebSocket URL of a session's stream."""
        return f"ws://localhost:{port}/sessions/{session_id}/stream"

    # =========================================================================
    # HTTP
    # =========================================================================

    async def fetch(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request to any path of the control API.

        Args:
            method: HTTP method
            path: Request path (leading '/' optional)
            **kwargs: Passed to httpx.AsyncClient.request (json, params, ...)

        Returns:
            The raw response, whatever its status

        Raises:
            SandboxNotRunningError: If the container is not running
            SandboxUnreachableError: On transport failure
        """
        port = await self.get_host_port()
        url = f"{self.base_url(port)}{path if path.startswith('/') else '/' + path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.request_timeout,
                transport=self._transport,
            ) as http:
                return await http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise SandboxUnreachableError(
                self.agent_id,
                f"Failed to reach sandbox: {e}",
                url=url,
            ) from e

    async def is_healthy(self) -> bool:
        """
        Check the sandbox's /health endpoint.

        Returns:
            True if the container runs and /health answers 2xx; never raises
        """
        try:
            response = await self.fetch("GET", "/health")
        except (SandboxNotRunningError, SandboxUnreachableError):
            return False
        return response.is_success

    async def health_check(self) -> bool:
        """Alias of is_healthy()."""
        return await self.is_healthy()

    async def wait_for_healthy(self, timeout: float = 60.0, interval: float = 1.0) -> bool:
        """
        Poll /health until it succeeds or the timeout elapses.

        Args:
            timeout: Maximum seconds to wait
            interval: Seconds between polls

        Returns:
            True if the sandbox became healthy in time
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            if await self.is_healthy():
                return True
            if loop.time() + interval > deadline:
                return False
            await asyncio.sleep(interval)

    async def create_session(self, options: CreateSessionOptions) -> SandboxSession:
        """
        Create a conversation inside the sandbox.

        Args:
            options: Session options; initial_message is required

        Returns:
            The new session, with the id assigned by the sandbox

        Raises:
            SandboxRequestError: If the sandbox rejects the request
        """
        response = await self.fetch("POST", "/sessions", json=options.to_wire())
        self._raise_for_status(response, "Failed to create session")
        return SandboxSession.model_validate(response.json())

    async def get_session(self, session_id: str) -> SandboxSession | None:
        """
        Fetch one session.

        Args:
            session_id: Sandbox-assigned session id

        Returns:
            The session, or None if the sandbox does not know it
        """
        response = await self.fetch("GET", f"/sessions/{session_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "Failed to get session")
        return SandboxSession.model_validate(response.json())

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session, closing its stream first.

        Args:
            session_id: Sandbox-assigned session id

        Returns:
            True if the sandbox acknowledged the deletion
        """
        stream = self._streams.pop(session_id, None)
        if stream is not None:
            await stream.close()
        response = await self.fetch("DELETE", f"/sessions/{session_id}")
        return response.is_success

    async def send_message(self, session_id: str, content: str) -> None:
        """
        Post a user message to a session.

        Raises:
            SandboxRequestError: If the sandbox rejects the message
        """
        response = await self.fetch(
            "POST",
            f"/sessions/{session_id}/messages",
            json={"content": content},
        )
        self._raise_for_status(response, "Failed to send message")

    async def interrupt_session(self, session_id: str) -> bool:
        """
        Ask the sandbox to interrupt the session's current turn.

        Returns:
            True if the sandbox acknowledged the interrupt
        """
        response = await self.fetch("POST", f"/sessions/{session_id}/interrupt")
        return response.is_success

    async def get_messages(self, session_id: str) -> list[Any]:
        """
        Fetch the sandbox's message history for a session.

        Raises:
            SandboxRequestError: If the sandbox rejects the request
        """
        response = await self.fetch("GET", f"/sessions/{session_id}/messages")
        self._raise_for_status(response, "Failed to get messages")
        data = response.json()
        return data if isinstance(data, list) else []

    async def get_stats(self) -> ContainerStats | None:
        """Resource usage of the sandbox container, when the runtime reports it."""
        return await self.runtime.get_stats(self.container_name)

    def _raise_for_status(self, response: httpx.Response, message: str) -> None:
        if response.is_success:
            return
        raise SandboxRequestError(
            self.agent_id,
            f"{message}: HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            response.status_code,
            url=str(response.request.url),
        )

    # =========================================================================
    # Streams
    # =========================================================================

    async def open_stream(self, session_id: str) -> StreamConnection:
        """
        Open the WebSocket stream for a session.

        An existing stream for the same session is closed first.

        Args:
            session_id: Sandbox-assigned session id

        Returns:
            Open StreamConnection

        Raises:
            SandboxNotRunningError: If the container is not running
            SandboxUnreachableError: If the connection cannot be established
        """
        existing = self._streams.pop(session_id, None)
        if existing is not None:
            await existing.close()

        port = await self.get_host_port()
        url = self.stream_url(port, session_id)
        try:
            websocket = await self._stream_connector(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise SandboxUnreachableError(
                self.agent_id,
                f"Failed to open stream: {e}",
                url=url,
            ) from e

        connection = StreamConnection(session_id, websocket, on_close=self._forget_stream)
        self._streams[session_id] = connection
        logger.debug(f"Stream connected for session {session_id} on port {port}")
        return connection

    @property
    def open_stream_count(self) -> int:
        """Number of stream connections currently open."""
        return len(self._streams)

    async def close_streams(self) -> None:
        """Close every stream connection opened through this client."""
        streams = list(self._streams.values())
        self._streams.clear()
        for stream in streams:
            await stream.close()

    def _forget_stream(self, connection: StreamConnection) -> None:
        if self._streams.get(connection.session_id) is connection:
            del self._streams[connection.session_id]
