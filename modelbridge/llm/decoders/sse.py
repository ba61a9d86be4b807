"""
Incremental Server-Sent-Events line splitting.

Transport chunks arrive at arbitrary byte offsets: a JSON frame, a line
terminator, or a multi-byte UTF-8 character may be split across two chunks.
``SSELineBuffer`` holds the partial tail until the rest arrives, so callers
only ever see complete lines.

Each SSE frame has the form::

    data: {json}\\n\\n

Only the ``data:`` field matters to the decoders; ``event:``, ``id:`` and
comment lines are passed through and ignored by ``data_payload``.
"""

from __future__ import annotations

import codecs


class SSELineBuffer:
    """Turns an arbitrarily chunked byte/text stream into complete lines."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add a chunk and return every line it completed (without EOL)."""
        if isinstance(chunk, bytes):
            text = self._decoder.decode(chunk)
        else:
            text = chunk
        if not text:
            return []
        self._buffer += text

        lines: list[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            lines.append(line.rstrip("\r"))
        return lines

    def flush(self) -> list[str]:
        """Return the trailing partial line, if any, at end of stream."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        tail = tail.rstrip("\r")
        return [tail] if tail else []


def data_payload(line: str) -> str | None:
    """Return the value of a ``data:`` line, or ``None`` for any other line."""
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()
