"""
Durable append-only session logs in JSONL format.

Each session's frames are written one JSON object per line, in strict
arrival order, to:
<data_dir>/sessions/<session_id>.jsonl
"""

import json
import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Any

logger = logging.getLogger(__name__)

_SAFE_SESSION_ID = re.compile(r"^[A-Za-z0-9._-]+$")


class SessionLog:
    """
    Append-only JSONL log store, one file per session.

    File handles are opened lazily on first append and kept open until
    close_session() or close().

    Example:
        >>> log = SessionLog(Path("~/.superagent/sessions").expanduser())
        >>> log.append("s1", {"type": "system", "subtype": "init"})
        >>> [frame["type"] for frame in log.iter_frames("s1")]
        ['system']
    """

    def __init__(self, directory: Path) -> None:
        """
        Initialize the log store.

        Args:
            directory: Directory holding <session_id>.jsonl files
        """
        self.directory = directory
        self._handles: dict[str, IO[str]] = {}

    def path_for(self, session_id: str) -> Path:
        """
        Get the log file path for a session.

        Raises:
            ValueError: If the session id is not a safe file name
        """
        if not _SAFE_SESSION_ID.match(session_id) or session_id in (".", ".."):
            raise ValueError(f"Invalid session id for log file: {session_id!r}")
        return self.directory / f"{session_id}.jsonl"

    def exists(self, session_id: str) -> bool:
        """Check whether a session has a log file."""
        return self.path_for(session_id).exists()

    def append(self, session_id: str, frame: dict[str, Any]) -> None:
        """
        Append one frame and flush it.

        Args:
            session_id: Session the frame belongs to
            frame: Decoded JSON object, written unchanged
        """
        handle = self._handles.get(session_id)
        if handle is None:
            path = self.path_for(session_id)
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = path.open("a", encoding="utf-8")
            self._handles[session_id] = handle

        json.dump(frame, handle, ensure_ascii=False, separators=(",", ":"), default=str)
        handle.write("\n")
        handle.flush()

    def iter_frames(self, session_id: str) -> Iterator[dict[str, Any]]:
        """
        Iterate over a session's frames in log order.

        Invalid lines are skipped with a warning. A missing log yields nothing.

        Yields:
            Decoded frames
        """
        path = self.path_for(session_id)
        if not path.exists():
            return

        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    frame = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping invalid line {line_num} in {path}: {e}")
                    continue
                if isinstance(frame, dict):
                    yield frame

    def read_all(self, session_id: str) -> list[dict[str, Any]]:
        """Read a session's frames into memory."""
        return list(self.iter_frames(session_id))

    def close_session(self, session_id: str) -> None:
        """Close the file handle for one session, if open."""
        handle = self._handles.pop(session_id, None)
        if handle is not None:
            handle.close()

    def close(self) -> None:
        """Close every open file handle."""
        for session_id in list(self._handles):
            self.close_session(session_id)
