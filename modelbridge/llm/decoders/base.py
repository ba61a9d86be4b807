"""
Shared machinery for the incremental wire decoders.

Decoders are sans-IO: the provider feeds raw transport chunks in, canonical
``StreamEvent`` objects come out.  Keeping I/O outside makes chunk-boundary
behaviour testable without a network and lets one decoder serve any
transport that yields bytes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterable, AsyncIterator, Callable

from modelbridge.llm.decoders.sse import SSELineBuffer, data_payload
from modelbridge.llm.tool_call_accumulator import ToolCallAccumulator
from modelbridge.llm.types import (
    MessageEnd,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolUseEnd,
    Usage,
    assistant_message,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class StreamDecoder(ABC):
    """
    Base class for one-stream-per-instance SSE decoders.

    Subclasses implement ``_handle_object`` for a single parsed JSON frame.
    Malformed frames are logged at debug level and skipped.  Once a terminal
    event has been produced every further ``feed`` returns nothing.
    """

    def __init__(self) -> None:
        self._lines = SSELineBuffer()
        self._accumulator = ToolCallAccumulator()
        self._content_parts: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._terminated = False
        self.usage: Usage | None = None
        self.skipped_frames = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def content(self) -> str:
        return "".join(self._content_parts)

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume one transport chunk and return the events it completed."""
        if self._terminated:
            return []
        events: list[StreamEvent] = []
        for line in self._lines.feed(chunk):
            events.extend(self._handle_line(line))
            if self._terminated:
                break
        return events

    def finish(self) -> list[StreamEvent]:
        """Signal stream exhaustion.  Flushes open state and ends the turn."""
        if self._terminated:
            return []
        events: list[StreamEvent] = []
        for line in self._lines.flush():
            events.extend(self._handle_line(line))
        if not self._terminated:
            events.extend(self._complete())
        return events

    def discard(self) -> None:
        """Abandon the stream (cancellation).  Open tool state is dropped."""
        self._accumulator.discard()
        self._terminated = True

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _handle_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        """Translate one decoded JSON frame into events."""

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _emit_text(self, text: str) -> TextDelta:
        self._content_parts.append(text)
        return TextDelta(text=text)

    def _close_tool(self) -> list[StreamEvent]:
        end = self._accumulator.finish()
        if end is None:
            return []
        self._record_tool(end)
        return [end]

    def _record_tool(self, end: ToolUseEnd) -> None:
        self._tool_calls.append(ToolCall(id=end.id, name=end.name, input=end.input))

    def _complete(self) -> list[StreamEvent]:
        """Flush any open call, then emit ``message_end``."""
        events = self._close_tool()
        events.append(
            MessageEnd(message=assistant_message(self.content, list(self._tool_calls)))
        )
        self._terminated = True
        return events

    def _fail(self, message: str) -> list[StreamEvent]:
        self._accumulator.discard()
        self._terminated = True
        return [StreamError(message=message)]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _handle_line(self, line: str) -> list[StreamEvent]:
        payload = data_payload(line)
        if not payload:
            return []
        if payload == DONE_SENTINEL:
            return self._complete()
        try:
            obj = json.loads(payload)
        except (json.JSONDecodeError, ValueError):
            self.skipped_frames += 1
            logger.debug("Failed to parse SSE data: %s", payload[:200])
            return []
        if not isinstance(obj, dict):
            self.skipped_frames += 1
            return []
        return self._handle_object(obj)


def decode_chunks(decoder: StreamDecoder, chunks: list[bytes | str]) -> list[StreamEvent]:
    """Decode an in-memory sequence of chunks.  Mostly useful for tests."""
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.finish())
    return events


async def decode_stream(
    decoder: StreamDecoder,
    chunks: AsyncIterable[bytes],
    should_stop: Callable[[], bool] | None = None,
) -> AsyncIterator[StreamEvent]:
    """
    Drive *decoder* from an async byte source, yielding events as they form.

    *should_stop* is polled between chunks; when it returns true the decoder
    is discarded and nothing further is yielded.
    """
    async for chunk in chunks:
        if should_stop is not None and should_stop():
            decoder.discard()
            return
        for event in decoder.feed(chunk):
            yield event
        if decoder.terminated:
            return
    for event in decoder.finish():
        yield event
