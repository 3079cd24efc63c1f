"""
Incremental frame decoders.

A single read from a pipe or socket may hold zero, one or many complete
frames plus a trailing fragment; both decoders buffer across reads and never
raise on malformed input.
"""

import json
from typing import Any, Dict, List, Optional

from ...core.logging import get_logger


logger = get_logger(__name__)


class NDJSONFrameBuffer:
    """Newline-delimited JSON decoder for stdio streams."""

    def __init__(self, max_line_bytes: int = 16 * 1024 * 1024):
        self._buffer = bytearray()
        self._max_line_bytes = max_line_bytes
        self.skipped = 0

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Append a chunk and return every complete frame it finished."""
        self._buffer.extend(chunk)
        frames: List[Dict[str, Any]] = []

        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[:newline + 1]
            frame = self._decode_line(line)
            if frame is not None:
                frames.append(frame)

        if len(self._buffer) > self._max_line_bytes:
            logger.warning(f"Discarding {len(self._buffer)} bytes without a line terminator")
            self._buffer.clear()
            self.skipped += 1

        return frames

    def flush(self) -> List[Dict[str, Any]]:
        """Decode a final unterminated line, e.g. at end of stream."""
        if not self._buffer:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        frame = self._decode_line(line)
        return [frame] if frame is not None else []

    def _decode_line(self, line: bytes) -> Optional[Dict[str, Any]]:
        line = line.strip()
        if not line:
            return None
        try:
            frame = json.loads(line)
        except ValueError:
            self.skipped += 1
            logger.warning(f"Skipping malformed line: {line[:200]!r}")
            return None
        if not isinstance(frame, dict):
            self.skipped += 1
            logger.warning(f"Skipping non-object frame: {line[:200]!r}")
            return None
        return frame


class SSEEventParser:
    """Server-sent events decoder yielding the ``data`` payload of each event."""

    def __init__(self):
        self._data: List[str] = []
        self.event_type: Optional[str] = None
        self.last_event_id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[str]:
        """
        Consume one line (without terminator).

        Returns:
            The complete data payload when ``line`` ends an event, else None
        """
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
        elif name == "event":
            self.event_type = value
        elif name == "id":
            self.last_event_id = value
        return None

    def _dispatch(self) -> Optional[str]:
        if not self._data:
            self.event_type = None
            return None
        payload = "\n".join(self._data)
        self._data = []
        self.event_type = None
        return payload


def decode_event_payload(payload: str) -> Optional[Dict[str, Any]]:
    """JSON-decode one pushed event, returning None for anything but an object."""
    try:
        frame = json.loads(payload)
    except ValueError:
        logger.warning(f"Skipping malformed event payload: {payload[:200]!r}")
        return None
    if not isinstance(frame, dict):
        logger.warning(f"Skipping non-object event payload: {payload[:200]!r}")
        return None
    return frame
