"""
Non-streaming fallback.

A single complete JSON document is parsed and replayed as the same event
sequence a streaming backend would produce, so callers never need to know
whether streaming was used::

    tool_use_start/tool_use_end per call -> text_delta(full text) -> message_end

Both document shapes are understood:

  - OpenAI: ``{"choices": [{"message": {"content": ..., "tool_calls": [...]}}]}``
  - Anthropic: ``{"content": [{"type": "text", "text": ...},
    {"type": "tool_use", "id": ..., "name": ..., "input": {...}}]}``
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from modelbridge.llm.decoders.openai_delta import parse_usage
from modelbridge.llm.decoders.xml_tools import (
    contains_tool_call_xml,
    parse_xml_tool_calls,
    strip_xml_tool_calls,
)
from modelbridge.llm.tool_call_accumulator import parse_tool_arguments, synthesize_tool_id
from modelbridge.llm.types import (
    MessageEnd,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolUseEnd,
    ToolUseStart,
    Usage,
    assistant_message,
)

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    stop_reason: str | None = None


def _openai_tool_calls(raw_tcs: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    if not isinstance(raw_tcs, list):
        return calls
    for idx, raw_tc in enumerate(raw_tcs):
        if not isinstance(raw_tc, dict):
            continue
        func = raw_tc.get("function") if isinstance(raw_tc.get("function"), dict) else {}
        arguments = func.get("arguments")
        if isinstance(arguments, dict):
            parsed = arguments
        else:
            parsed = parse_tool_arguments(arguments if isinstance(arguments, str) else "")
        calls.append(
            ToolCall(
                id=raw_tc.get("id") or synthesize_tool_id(idx),
                name=func.get("name") or "",
                input=parsed,
            )
        )
    return calls


def parse_openai_completion(obj: dict[str, Any]) -> Completion:
    choices = obj.get("choices")
    usage = parse_usage(obj.get("usage"))
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return Completion(usage=usage)
    choice = choices[0]
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
    content = message.get("content")
    return Completion(
        text=content if isinstance(content, str) else "",
        tool_calls=_openai_tool_calls(message.get("tool_calls")),
        usage=usage,
        stop_reason=choice.get("finish_reason"),
    )


def parse_anthropic_completion(obj: dict[str, Any]) -> Completion:
    text_parts: list[str] = []
    calls: list[ToolCall] = []
    blocks = obj.get("content")
    if isinstance(blocks, list):
        for block in blocks:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                text_parts.append(block["text"])
            elif block.get("type") == "tool_use":
                raw_input = block.get("input")
                calls.append(
                    ToolCall(
                        id=block.get("id") or synthesize_tool_id(len(calls)),
                        name=block.get("name") or "",
                        input=raw_input if isinstance(raw_input, dict) else {},
                    )
                )
    return Completion(
        text="".join(text_parts),
        tool_calls=calls,
        usage=parse_usage(obj.get("usage")),
        stop_reason=obj.get("stop_reason"),
    )


def parse_completion(obj: dict[str, Any] | str | bytes) -> Completion:
    """Parse either document shape.  Raw text is decoded first."""
    if isinstance(obj, (str, bytes)):
        obj = json.loads(obj)
    if not isinstance(obj, dict):
        raise ValueError("completion document must be a JSON object")
    if "choices" in obj:
        return parse_openai_completion(obj)
    if "content" in obj and isinstance(obj.get("content"), list):
        return parse_anthropic_completion(obj)
    logger.debug("Unrecognised completion document keys=%s", sorted(obj))
    return Completion(usage=parse_usage(obj.get("usage")))


def extract_xml_fallback(completion: Completion) -> Completion:
    """Lift XML-encoded tool calls out of the text when none are structured."""
    if completion.tool_calls or not contains_tool_call_xml(completion.text):
        return completion
    calls = parse_xml_tool_calls(completion.text)
    if not calls:
        return completion
    logger.debug("Recovered %d XML tool call(s) from completion text", len(calls))
    return Completion(
        text=strip_xml_tool_calls(completion.text),
        tool_calls=calls,
        usage=completion.usage,
        stop_reason=completion.stop_reason,
    )


def decode_completion(completion: Completion) -> list[StreamEvent]:
    """Replay a complete response as canonical stream events."""
    events: list[StreamEvent] = []
    for call in completion.tool_calls:
        events.append(ToolUseStart(id=call.id, name=call.name))
        events.append(ToolUseEnd(id=call.id, name=call.name, input=call.input))
    events.append(TextDelta(text=completion.text))
    events.append(
        MessageEnd(message=assistant_message(completion.text, list(completion.tool_calls)))
    )
    return events
