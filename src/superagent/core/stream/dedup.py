"""
Streaming-versus-persisted text de-duplication.

The sandbox's live stream and its durable log are written by independent
code paths with no shared correlation id for partial text. A streaming
fragment counts as already absorbed into the log when the last persisted
assistant text is a prefix of the fragment, or the fragment is a prefix of
it. Both sides are trimmed and both must be non-empty.

This is a heuristic and is kept exactly as stated; changing it changes what
viewers see.
"""

from collections.abc import Iterable
from typing import Any


def assistant_text(frame: dict[str, Any]) -> str | None:
    """
    Extract the text of an assistant frame.

    Handles both the SDK shape ({"message": {"content": [{"type": "text",
    "text": ...}]}}) and a flat {"content": {"text": ...}} shape.

    Args:
        frame: A decoded stream or log frame

    Returns:
        Concatenated text, or None for non-assistant frames
    """
    if frame.get("type") != "assistant":
        return None

    content = frame.get("content")
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]

    message = frame.get("message")
    blocks = message.get("content") if isinstance(message, dict) else None
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""
    return "".join(
        block.get("text", "")
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    )


def last_assistant_text(frames: Iterable[dict[str, Any]]) -> str | None:
    """
    Find the text of the last assistant frame.

    Args:
        frames: Frames in log order

    Returns:
        Text of the last assistant frame, or None if there is none
    """
    last = None
    for frame in frames:
        text = assistant_text(frame)
        if text is not None:
            last = text
    return last


def is_absorbed(fragment: str | None, persisted: str | None) -> bool:
    """
    Decide whether a streaming fragment is already in the durable log.

    Args:
        fragment: Text accumulated from the live stream
        persisted: Text of the last persisted assistant entry

    Returns:
        True if either trimmed text is a prefix of the other

    Example:
        >>> is_absorbed("Hello world", "Hello wor")
        True
        >>> is_absorbed("Hello wor", "Hello world, how")
        True
        >>> is_absorbed("Goodbye", "Hello")
        False
    """
    streaming_text = (fragment or "").strip()
    persisted_text = (persisted or "").strip()
    if not streaming_text or not persisted_text:
        return False
    return persisted_text.startswith(streaming_text) or streaming_text.startswith(persisted_text)
