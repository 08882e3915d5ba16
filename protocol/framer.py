"""Newline-delimited JSON framing over a raw byte stream.

The agent's stdout arrives in arbitrary chunks. ``MessageFramer`` keeps the
trailing partial record between ``feed`` calls and emits every complete,
non-blank line. Lines that are not JSON objects are dropped: agents print
banners, progress chatter and ANSI noise between protocol messages, and none
of that may abort a session.

A structured message split by a newline inside one of its string values is
not reconstructed; both halves are dropped as unparseable.

Behind a terminal layer the agent's stdout may also carry our own writes
back. Lines registered with ``expect_echo`` are consumed once when they
reappear and are never parsed as inbound messages.
"""
import json
import logging
from collections import deque
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ECHO_MEMORY = 64


def parse_line(line: str) -> Optional[Dict[str, Any]]:
    """Parse a single line as a JSON object, None if it is anything else"""
    line = line.strip()
    if not line or not line.startswith("{"):
        return None
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


class MessageFramer:
    """Reassembles newline-delimited records across chunk boundaries"""

    def __init__(self):
        self._buffer = bytearray()
        self._echoes = deque(maxlen=ECHO_MEMORY)
        self.dropped = 0
        self.echoed = 0

    @property
    def pending(self) -> bytes:
        """Incomplete trailing record"""
        return bytes(self._buffer)

    def expect_echo(self, data: bytes):
        """Remember a line we wrote so its echo is skipped once"""
        line = data.decode("utf-8", errors="replace").strip()
        if line:
            self._echoes.append(line)

    def feed_lines(self, chunk: bytes) -> List[str]:
        """Append chunk, return the complete non-blank lines it finished"""
        self._buffer.extend(chunk)
        if b"\n" not in chunk:
            return []

        *complete, rest = bytes(self._buffer).split(b"\n")
        self._buffer = bytearray(rest)

        lines = []
        for raw in complete:
            # Decode per line so multi-byte characters split across chunks survive
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
        return lines

    def flush_lines(self) -> List[str]:
        """Buffered remainder as a final line, if there is one"""
        rest = self._buffer.decode("utf-8", errors="replace").strip()
        self._buffer.clear()
        return [rest] if rest else []

    def feed(self, chunk: bytes) -> List[Dict[str, Any]]:
        """Append chunk, return the structured messages it completed"""
        return self._parse(self.feed_lines(chunk))

    def flush(self) -> List[Dict[str, Any]]:
        """Treat the buffered remainder as a final line (call at EOF)"""
        return self._parse(self.flush_lines())

    def reset(self):
        self._buffer.clear()
        self._echoes.clear()

    def _parse(self, lines: List[str]) -> List[Dict[str, Any]]:
        messages = []
        for line in lines:
            if line in self._echoes:
                self._echoes.remove(line)
                self.echoed += 1
                logger.debug(f"Skipping echo of our own write: {line[:200]}")
                continue
            message = parse_line(line)
            if message is None:
                self.dropped += 1
                logger.debug(f"Dropping non-protocol line: {line[:200]}")
                continue
            messages.append(message)
        return messages
