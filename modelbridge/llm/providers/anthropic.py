"""
Anthropic Messages API provider.

Also serves Anthropic-compatible re-implementations (MiniMax,
GLM's ``/api/anthropic`` endpoint) through their presets.  Talks to
``/v1/messages`` over ``httpx``; no ``anthropic`` SDK needed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import httpx

from modelbridge.config import ProviderConfig, mask_key
from modelbridge.llm.decoders import AnthropicBlockDecoder, decode_completion
from modelbridge.llm.decoders.completion import Completion, parse_anthropic_completion
from modelbridge.llm.errors import annotate, error_from_exception
from modelbridge.llm.health import HEALTH_PROBE_MAX_TOKENS, HEALTH_PROBE_PROMPT
from modelbridge.llm.providers.presets import PROVIDER_PRESETS, ProviderPreset
from modelbridge.llm.providers.runtime import ProviderRuntime
from modelbridge.llm.retry import SleepFn
from modelbridge.llm.stream import CancellationToken, EventStream
from modelbridge.llm.tool_schema import check_tool_specs
from modelbridge.llm.types import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    HealthStatus,
    MessageRole,
    ProviderCapability,
    StreamError,
    StreamEvent,
    ToolSpec,
    ValidationResult,
    assistant_message,
)

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"


def to_wire_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, Any]]]:
    """
    Canonical messages -> ``(system, messages)`` for the Messages API.

    System messages are lifted into the top-level ``system`` string.  Tool
    results become ``tool_result`` blocks in a user turn; consecutive results
    share one turn.
    """
    system_parts: list[str] = []
    wire: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == MessageRole.SYSTEM:
            if msg.content:
                system_parts.append(msg.content)
            continue

        if msg.role == MessageRole.TOOL:
            if not msg.tool_result_for:
                logger.warning("Dropping tool result %s without a tool call id", msg.id)
                continue
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_result_for,
                "content": str(msg.content or ""),
            }
            prev = wire[-1] if wire else None
            if (
                prev is not None
                and prev["role"] == "user"
                and prev["content"]
                and all(b.get("type") == "tool_result" for b in prev["content"])
            ):
                prev["content"].append(block)
            else:
                wire.append({"role": "user", "content": [block]})
            continue

        if msg.role == MessageRole.ASSISTANT:
            blocks: list[dict[str, Any]] = []
            if msg.content or not msg.tool_calls:
                blocks.append({"type": "text", "text": str(msg.content or "")})
            for tc in msg.tool_calls or []:
                blocks.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": tc.input or {},
                })
            wire.append({"role": "assistant", "content": blocks})
            continue

        wire.append({
            "role": "user",
            "content": [{"type": "text", "text": str(msg.content or "")}],
        })

    return "\n\n".join(system_parts), wire


def to_wire_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


class AnthropicProvider:
    """Stream-capable provider for the Anthropic Messages API family."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        preset: ProviderPreset | None = None,
        proxy: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._preset = preset or PROVIDER_PRESETS.get(
            config.effective_kind, PROVIDER_PRESETS["anthropic"]
        )
        self._proxy = proxy
        self._transport = transport
        self._sleep = sleep
        self._runtime = self._make_runtime(config)

    def _make_runtime(self, config: ProviderConfig) -> ProviderRuntime:
        return ProviderRuntime(
            config,
            self._preset,
            proxy=self._proxy,
            transport=self._transport,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._runtime.name

    @property
    def display_name(self) -> str:
        return self._runtime.display_name

    @property
    def capabilities(self) -> frozenset[ProviderCapability]:
        return self._preset.capabilities

    @property
    def config(self) -> ProviderConfig:
        return self._runtime.config

    @property
    def runtime(self) -> ProviderRuntime:
        return self._runtime

    def configure(self, config: ProviderConfig) -> None:
        self._runtime = self._make_runtime(config)
        logger.debug("Provider %s configured: %s", self.name, self._runtime.describe())

    def is_configured(self) -> bool:
        return self._runtime.is_configured()

    def is_enabled(self) -> bool:
        return self._runtime.config.enabled

    def validate_config(self) -> ValidationResult:
        return self._runtime.validate()

    async def health_check(self) -> HealthStatus:
        rt = self._runtime
        body = {
            "model": rt.model,
            "max_tokens": HEALTH_PROBE_MAX_TOKENS,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": HEALTH_PROBE_PROMPT}]}
            ],
        }
        headers = self._build_headers(rt)
        report = await rt.probe(lambda: rt.send_probe(headers, "POST", MESSAGES_PATH, body))
        return report.status

    async def chat(self, request: ChatRequest) -> ChatResponse:
        rt = self._runtime
        try:
            rt.require_configured()
            completion = await self._complete(rt, request)
        except Exception as exc:
            err = error_from_exception(exc, self.name)
            logger.error("%s chat failed: %s", self.display_name, err)
            annotate(err, f"{self.display_name} chat failed")
            if err is exc:
                raise
            raise err from exc
        return ChatResponse(
            message=assistant_message(completion.text, completion.tool_calls),
            usage=completion.usage,
        )

    def chat_stream(
        self, request: ChatRequest, cancel: CancellationToken | None = None
    ) -> EventStream:
        token = cancel or CancellationToken()
        return EventStream(
            self._stream_events(self._runtime, request, token),
            token,
            label=self.display_name,
        )

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self, rt: ProviderRuntime, stream: bool = False) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if rt.api_key:
            headers["x-api-key"] = rt.api_key
            if rt.preset.kind == "glm-anthropic":
                headers["Authorization"] = f"Bearer {rt.api_key}"
        return headers

    def _build_body(
        self, rt: ProviderRuntime, request: ChatRequest, *, stream: bool
    ) -> dict[str, Any]:
        system, messages = to_wire_messages(request.messages)
        if request.system_prompt:
            system = f"{request.system_prompt}\n\n{system}" if system else request.system_prompt
        body: dict[str, Any] = {
            "model": request.model or rt.model,
            "max_tokens": request.max_tokens or rt.config.max_tokens,
            "messages": messages,
            "temperature": (
                request.temperature if request.temperature is not None else rt.temperature
            ),
            "stream": stream,
        }
        if system:
            body["system"] = system
        if request.tools:
            check_tool_specs(request.tools)
            body["tools"] = to_wire_tools(request.tools)
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d stream=%s api_key=%s",
            rt.name,
            body["model"],
            len(body.get("tools", [])),
            len(messages),
            stream,
            mask_key(rt.api_key),
        )
        return body

    async def _complete(self, rt: ProviderRuntime, request: ChatRequest) -> Completion:
        body = self._build_body(rt, request, stream=False)
        data = await rt.post_json(MESSAGES_PATH, body, self._build_headers(rt))
        return parse_anthropic_completion(data)

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_events(
        self, rt: ProviderRuntime, request: ChatRequest, token: CancellationToken
    ) -> AsyncIterator[StreamEvent]:
        prefix = f"{rt.display_name} stream failed"
        try:
            rt.require_configured()

            if rt.config.disable_streaming or not request.stream:
                completion = await self._complete(rt, request)
                for event in decode_completion(completion):
                    yield event
                return

            body = self._build_body(rt, request, stream=True)
            headers = self._build_headers(rt, stream=True)
            async with rt.stream(MESSAGES_PATH, body, headers) as response:
                async for event in rt.events(AnthropicBlockDecoder(), response, token):
                    if isinstance(event, StreamError):
                        event = StreamError(message=f"{prefix}: {event.message}")
                    yield event
        except Exception as exc:
            err = error_from_exception(exc, rt.name)
            logger.error("%s: %s", prefix, err)
            yield StreamError(message=f"{prefix}: {err}")
