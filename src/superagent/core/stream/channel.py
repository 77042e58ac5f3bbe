"""
Fan-out channels for live viewers.

Every viewer owns a bounded asyncio.Queue. Publishing never blocks the
producer: a viewer whose queue is full is closed and dropped with a warning.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

logger = logging.getLogger(__name__)

ViewerMessage = dict[str, Any]

# Marks the end of a viewer's stream
_CLOSED = object()


class Viewer:
    """
    One attached consumer of a channel.

    Async-iterable: yields published messages in order until closed.

    Example:
        >>> viewer = persister.add_viewer("s1")
        >>> async for message in viewer:
        ...     print(message["type"])
    """

    def __init__(self, channel: "ViewerChannel", maxsize: int) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = False

    @property
    def closed(self) -> bool:
        """Whether the viewer was closed (by itself, its channel or backpressure)."""
        return self._closed

    @property
    def pending(self) -> int:
        """Messages queued but not yet consumed."""
        return self._queue.qsize()

    def offer(self, message: ViewerMessage) -> bool:
        """
        Queue a message without blocking.

        Returns:
            False if the viewer is closed or its queue is full
        """
        if self._closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self) -> ViewerMessage | None:
        """
        Wait for the next message.

        Returns:
            The message, or None once the viewer is closed and drained
        """
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ViewerMessage]:
        return self._messages()

    async def _messages(self) -> AsyncIterator[ViewerMessage]:
        while True:
            message = await self.get()
            if message is None:
                return
            yield message

    def close(self, *, discard_pending: bool = False) -> None:
        """
        Detach from the channel and end iteration.

        Args:
            discard_pending: Drop queued messages instead of delivering them first
        """
        if self._closed:
            return
        self._closed = True
        self._channel.remove(self)

        if discard_pending:
            while not self._queue.empty():
                self._queue.get_nowait()
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer drains the backlog, then sees closed and empty
            pass


class ViewerChannel:
    """
    Set of viewers receiving the same messages.

    Example:
        >>> channel = ViewerChannel("session s1", maxsize=100)
        >>> viewer = channel.add_viewer()
        >>> channel.publish({"type": "stream_start"})
        1
    """

    def __init__(self, name: str, maxsize: int = 1000) -> None:
        self.name = name
        self.maxsize = maxsize
        self._viewers: list[Viewer] = []

    def __len__(self) -> int:
        return len(self._viewers)

    def add_viewer(self) -> Viewer:
        """Attach a new viewer; it sees only messages published from now on."""
        viewer = Viewer(self, self.maxsize)
        self._viewers.append(viewer)
        logger.debug(f"Viewer added to {self.name}, total: {len(self._viewers)}")
        return viewer

    def remove(self, viewer: Viewer) -> None:
        """Detach a viewer without closing it. Safe if it is not attached."""
        try:
            self._viewers.remove(viewer)
        except ValueError:
            return
        logger.debug(f"Viewer removed from {self.name}, remaining: {len(self._viewers)}")

    def publish(self, message: ViewerMessage) -> int:
        """
        Deliver a message to every viewer without blocking.

        Viewers that cannot take the message are closed and dropped.

        Args:
            message: Message to deliver

        Returns:
            Number of viewers that received it
        """
        delivered = 0
        for viewer in list(self._viewers):
            if viewer.offer(message):
                delivered += 1
                continue
            logger.warning(
                f"Dropping slow viewer on {self.name}: "
                f"{viewer.pending} messages pending (limit {self.maxsize})"
            )
            viewer.dropped = True
            viewer.close(discard_pending=True)
        return delivered

    def close(self) -> None:
        """Close every viewer; each delivers its backlog, then ends."""
        for viewer in list(self._viewers):
            viewer.close()
        self._viewers.clear()
