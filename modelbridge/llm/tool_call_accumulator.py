"""
Reassembles one fragmented tool invocation at a time.

State machine:

    ABSENT --start()--> OPEN --append()--> OPEN --finish()--> CLOSING --> ABSENT

  - ``start`` carries the call id and name (given directly by content-block
    streams, or synthesized by index-addressed streams when the backend
    omits the id on the first frame).
  - ``append`` adds a fragment of the JSON argument text.
  - ``finish`` parses the buffered text.  A parse failure yields ``{}``
    instead of an error so one bad call never aborts the stream.
  - ``discard`` drops the open call without reporting it (cancellation).

An accumulator belongs to exactly one decoder, which belongs to exactly one
stream.  It is never shared across calls.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from modelbridge.llm.types import ToolUseEnd, ToolUseStart

logger = logging.getLogger(__name__)


class AccumulatorState(str, Enum):
    ABSENT = "absent"
    OPEN = "open"
    CLOSING = "closing"


@dataclass
class PendingToolCall:
    id: str
    name: str
    partial_arguments: str = ""


def synthesize_tool_id(index: int) -> str:
    """Best-effort id for backends that omit one: ``tool_<epoch-ms>_<index>``."""
    return f"tool_{int(time.time() * 1000)}_{index}"


def parse_tool_arguments(text: str) -> dict[str, Any]:
    """Parse accumulated argument text.  Never raises."""
    if not text or not text.strip():
        return {}
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        logger.debug("tool_call_json_parse_failed err=%s text=%r", exc, text[:200])
        return {}
    if not isinstance(value, dict):
        logger.debug("tool_call_arguments_not_object type=%s", type(value).__name__)
        return {}
    return value


class ToolCallAccumulator:
    """Buffers argument fragments for the currently open tool call."""

    def __init__(self) -> None:
        self._pending: PendingToolCall | None = None
        self._state = AccumulatorState.ABSENT

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> AccumulatorState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is AccumulatorState.OPEN

    @property
    def pending(self) -> PendingToolCall | None:
        return self._pending

    def start(self, call_id: str, name: str, arguments: str = "") -> ToolUseStart:
        """Open a new call.  The previous one must be finished first."""
        if self._state is not AccumulatorState.ABSENT:
            raise RuntimeError(
                f"tool call {self._pending.id if self._pending else '?'} still open"
            )
        self._pending = PendingToolCall(
            id=call_id, name=name, partial_arguments=arguments or ""
        )
        self._state = AccumulatorState.OPEN
        return ToolUseStart(id=call_id, name=name)

    def append(self, fragment: str) -> None:
        """Append argument text.  Ignored when no call is open."""
        if self._state is not AccumulatorState.OPEN or not fragment:
            return
        assert self._pending is not None
        self._pending.partial_arguments += fragment

    def finish(self) -> ToolUseEnd | None:
        """Close the open call and report it.  Returns ``None`` when absent."""
        if self._state is not AccumulatorState.OPEN:
            return None
        assert self._pending is not None
        self._state = AccumulatorState.CLOSING
        pending = self._pending
        event = ToolUseEnd(
            id=pending.id,
            name=pending.name,
            input=parse_tool_arguments(pending.partial_arguments),
        )
        self._reset()
        return event

    def discard(self) -> None:
        """Drop any open call without reporting it."""
        if self._pending is not None:
            logger.debug("tool call discarded id=%s", self._pending.id)
        self._reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reset(self) -> None:
        self._pending = None
        self._state = AccumulatorState.ABSENT
