"""LLM subsystem -- providers, registry, and the canonical stream event model."""

from modelbridge.llm.errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitError,
    TransportError,
    UpstreamError,
)
from modelbridge.llm.types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    HealthStatus,
    MessageEnd,
    MessageRole,
    ProviderCapability,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolSpec,
    ToolUseEnd,
    ToolUseStart,
    Usage,
    ValidationResult,
)
from modelbridge.llm.registry import ProviderRegistry
from modelbridge.llm.retry import RetryPolicy, with_retry
from modelbridge.llm.stream import CancellationToken, EventStream
from modelbridge.llm.tool_call_accumulator import ToolCallAccumulator
from modelbridge.llm.tool_schema import validate_tool_input

__all__ = [
    "AuthenticationError",
    "CancellationToken",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ConfigurationError",
    "EventStream",
    "HealthStatus",
    "MessageEnd",
    "MessageRole",
    "ProviderCapability",
    "ProviderError",
    "ProviderRegistry",
    "ProviderTimeoutError",
    "RateLimitError",
    "RetryPolicy",
    "StreamError",
    "StreamEvent",
    "TextDelta",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolSpec",
    "ToolUseEnd",
    "ToolUseStart",
    "TransportError",
    "UpstreamError",
    "Usage",
    "ValidationResult",
    "validate_tool_input",
]
