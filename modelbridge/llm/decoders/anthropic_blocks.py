"""
Content-block-addressed streams (Anthropic Messages API and compatible
re-implementations such as MiniMax and GLM's ``/api/anthropic`` endpoint).

Blocks have an explicit lifecycle::

    event: content_block_start
    data: {"type":"content_block_start","index":1,
           "content_block":{"type":"tool_use","id":"t1","name":"ls","input":{}}}

    event: content_block_delta
    data: {"type":"content_block_delta","index":1,
           "delta":{"type":"input_json_delta","partial_json":"{\\"path\\":"}}

    event: content_block_stop
    data: {"type":"content_block_stop","index":1}

Tool id and name are known at block start, so ``tool_use_start`` is emitted
immediately; the arguments arrive as ``partial_json`` fragments and are
parsed on ``content_block_stop``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from modelbridge.llm.decoders.base import StreamDecoder
from modelbridge.llm.decoders.openai_delta import parse_usage
from modelbridge.llm.tool_call_accumulator import synthesize_tool_id
from modelbridge.llm.types import StreamEvent, Usage

logger = logging.getLogger(__name__)


@dataclass
class BlockStart:
    index: int
    block_type: str  # "text" | "tool_use" | vendor-specific
    id: str | None = None
    name: str | None = None
    text: str = ""


@dataclass
class BlockDelta:
    index: int
    delta_type: str  # "text_delta" | "input_json_delta" | vendor-specific
    text: str = ""
    partial_json: str = ""


@dataclass
class BlockStop:
    index: int


@dataclass
class MessageDelta:
    usage: Usage | None = None
    stop_reason: str | None = None


@dataclass
class MessageStop:
    pass


@dataclass
class StreamFailure:
    error_type: str
    message: str


BlockEvent = Union[BlockStart, BlockDelta, BlockStop, MessageDelta, MessageStop, StreamFailure]


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _index(obj: dict[str, Any]) -> int:
    index = obj.get("index")
    return index if isinstance(index, int) else 0


def parse_event(obj: dict[str, Any]) -> BlockEvent | None:
    """Parse one streamed Messages API event.  Unknown types return ``None``."""
    event_type = obj.get("type")

    if event_type == "content_block_start":
        block = obj.get("content_block")
        if not isinstance(block, dict):
            return None
        return BlockStart(
            index=_index(obj),
            block_type=_str(block.get("type")),
            id=_str(block.get("id")) or None,
            name=_str(block.get("name")) or None,
            text=_str(block.get("text")),
        )

    if event_type == "content_block_delta":
        delta = obj.get("delta")
        if not isinstance(delta, dict):
            return None
        return BlockDelta(
            index=_index(obj),
            delta_type=_str(delta.get("type")),
            text=_str(delta.get("text")),
            partial_json=_str(delta.get("partial_json")),
        )

    if event_type == "content_block_stop":
        return BlockStop(index=_index(obj))

    if event_type == "message_delta":
        delta = obj.get("delta")
        stop_reason = delta.get("stop_reason") if isinstance(delta, dict) else None
        return MessageDelta(
            usage=parse_usage(obj.get("usage")),
            stop_reason=stop_reason if isinstance(stop_reason, str) else None,
        )

    if event_type == "message_stop":
        return MessageStop()

    if event_type == "error":
        err = obj.get("error")
        if isinstance(err, dict):
            return StreamFailure(
                error_type=_str(err.get("type")) or "error",
                message=_str(err.get("message")) or "unknown error",
            )
        return StreamFailure(error_type="error", message=str(err or "unknown error"))

    # message_start, ping and vendor extensions carry nothing we need.
    return None


class AnthropicBlockDecoder(StreamDecoder):
    """Decoder for content-block-addressed streams."""

    def __init__(self) -> None:
        super().__init__()
        self._tool_count = 0

    def _handle_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        event = parse_event(obj)
        if event is None:
            return []

        if isinstance(event, BlockStart):
            if event.block_type == "tool_use":
                # A stop may have been lost; never leave two calls open.
                events = self._close_tool()
                call_id = event.id or synthesize_tool_id(self._tool_count)
                self._tool_count += 1
                events.append(self._accumulator.start(call_id, event.name or ""))
                return events
            if event.block_type == "text" and event.text:
                return [self._emit_text(event.text)]
            return []

        if isinstance(event, BlockDelta):
            if event.delta_type == "text_delta" and event.text:
                return [self._emit_text(event.text)]
            if event.delta_type == "input_json_delta":
                self._accumulator.append(event.partial_json)
            return []

        if isinstance(event, BlockStop):
            return self._close_tool()

        if isinstance(event, MessageDelta):
            if event.usage is not None:
                self.usage = event.usage
            return []

        if isinstance(event, MessageStop):
            return self._complete()

        if isinstance(event, StreamFailure):
            return self._fail(f"{event.error_type}: {event.message}")

        return []
