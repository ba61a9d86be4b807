"""
Index-addressed delta streams (OpenAI ``/v1/chat/completions``, vLLM,
Ollama, LM Studio, and every other OpenAI-compatible server).

Each frame carries ``choices[0].delta`` with either text content or a list
of tool-call fragments addressed by ``index``::

    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: {"choices":[{"delta":{"tool_calls":[{"index":0,"id":"call_1",
           "function":{"name":"ls","arguments":"{\\"pa"}}]}}]}
    data: {"choices":[{"delta":{"tool_calls":[{"index":0,
           "function":{"arguments":"th\\": \\"/\\"}"}}]}}]}
    data: [DONE]

A change of ``index`` closes the previous call and opens the next one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from modelbridge.llm.decoders.base import StreamDecoder
from modelbridge.llm.tool_call_accumulator import synthesize_tool_id
from modelbridge.llm.types import StreamEvent, Usage

logger = logging.getLogger(__name__)


@dataclass
class ToolCallDelta:
    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass
class DeltaFrame:
    content: str | None = None
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage | None = None


def parse_usage(raw: Any) -> Usage | None:
    if not isinstance(raw, dict):
        return None
    prompt = int(raw.get("prompt_tokens") or raw.get("input_tokens") or 0)
    completion = int(raw.get("completion_tokens") or raw.get("output_tokens") or 0)
    total = int(raw.get("total_tokens") or prompt + completion)
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _parse_tool_call_delta(raw: Any) -> ToolCallDelta | None:
    if not isinstance(raw, dict):
        return None
    func = raw.get("function")
    if not isinstance(func, dict):
        func = {}
    index = raw.get("index")
    name = func.get("name")
    arguments = func.get("arguments")
    return ToolCallDelta(
        index=index if isinstance(index, int) else 0,
        id=raw.get("id") if isinstance(raw.get("id"), str) and raw.get("id") else None,
        name=name if isinstance(name, str) else None,
        arguments=arguments if isinstance(arguments, str) else "",
    )


def parse_chunk(obj: dict[str, Any]) -> DeltaFrame | None:
    """Parse one ``chat.completion.chunk`` object.  ``None`` if it has no choice."""
    usage = parse_usage(obj.get("usage"))
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        if usage is not None:
            return DeltaFrame(usage=usage)
        return None

    choice = choices[0]
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}

    content = delta.get("content")
    tool_calls: list[ToolCallDelta] = []
    raw_tcs = delta.get("tool_calls")
    if isinstance(raw_tcs, list):
        for raw_tc in raw_tcs:
            parsed = _parse_tool_call_delta(raw_tc)
            if parsed is not None:
                tool_calls.append(parsed)

    finish_reason = choice.get("finish_reason")
    return DeltaFrame(
        content=content if isinstance(content, str) else None,
        tool_calls=tool_calls,
        finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        usage=usage,
    )


class OpenAIDeltaDecoder(StreamDecoder):
    """Decoder for index-addressed delta streams."""

    def __init__(self) -> None:
        super().__init__()
        self._current_index: int | None = None

    def _handle_object(self, obj: dict[str, Any]) -> list[StreamEvent]:
        frame = parse_chunk(obj)
        if frame is None:
            return []
        if frame.usage is not None:
            self.usage = frame.usage

        events: list[StreamEvent] = []
        for tc in frame.tool_calls:
            if tc.index != self._current_index:
                events.extend(self._close_tool())
                self._current_index = tc.index
                call_id = tc.id or synthesize_tool_id(tc.index)
                events.append(
                    self._accumulator.start(call_id, tc.name or "", tc.arguments)
                )
            else:
                self._accumulator.append(tc.arguments)

        if frame.content:
            events.append(self._emit_text(frame.content))

        if frame.finish_reason:
            logger.debug("finish_reason=%s", frame.finish_reason)
        return events
