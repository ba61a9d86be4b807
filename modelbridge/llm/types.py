"""Core types for the LLM subsystem.

The canonical stream event model lives here.  Every wire decoder emits
these events and every consumer (chat session, command generator, CLI)
reads them without knowing which backend produced them.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ProviderCapability(str, Enum):
    CHAT = "chat"
    COMMAND_GENERATION = "command_generation"
    COMMAND_EXPLANATION = "command_explanation"
    REASONING = "reasoning"
    FUNCTION_CALL = "function_call"
    STREAMING = "streaming"


def new_message_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class ToolCall:
    """A resolved tool call with parsed arguments."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolSpec:
    """A callable-tool schema offered to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: MessageRole
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_result_for: str | None = None  # id of the tool call this answers
    id: str = field(default_factory=new_message_id)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.role, MessageRole):
            self.role = MessageRole(self.role)


@dataclass
class ChatRequest:
    messages: list[ChatMessage]
    max_tokens: int = 1000
    temperature: float | None = None
    tools: list[ToolSpec] | None = None
    system_prompt: str | None = None
    model: str | None = None
    stream: bool = True


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResponse:
    message: ChatMessage
    usage: Usage | None = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] | None = None
    warnings: list[str] | None = None


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    """An incremental fragment of assistant output."""

    text: str
    type: Literal["text_delta"] = field(default="text_delta", init=False)


@dataclass(frozen=True)
class ToolUseStart:
    """A tool invocation has begun; its arguments are not known yet."""

    id: str
    name: str
    type: Literal["tool_use_start"] = field(default="tool_use_start", init=False)


@dataclass(frozen=True)
class ToolUseEnd:
    """The invocation's arguments are complete and parsed."""

    id: str
    name: str
    input: dict[str, Any]
    type: Literal["tool_use_end"] = field(default="tool_use_end", init=False)


@dataclass(frozen=True)
class MessageEnd:
    """
    The turn is complete.

    ``message.content`` is the concatenation of every ``TextDelta.text``
    emitted before it, in order.
    """

    message: ChatMessage
    type: Literal["message_end"] = field(default="message_end", init=False)


@dataclass(frozen=True)
class StreamError:
    """Terminal failure.  No further events follow."""

    message: str
    type: Literal["error"] = field(default="error", init=False)


StreamEvent = Union[TextDelta, ToolUseStart, ToolUseEnd, MessageEnd, StreamError]

TERMINAL_EVENT_TYPES = frozenset({"message_end", "error"})


def is_terminal(event: StreamEvent) -> bool:
    return event.type in TERMINAL_EVENT_TYPES


def assistant_message(
    content: str, tool_calls: list[ToolCall] | None = None
) -> ChatMessage:
    return ChatMessage(
        role=MessageRole.ASSISTANT,
        content=content,
        tool_calls=tool_calls or None,
    )
