"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, vLLM, Ollama's ``/v1`` shim, GLM's paas API,
LocalAI, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from modelbridge.config import ProviderConfig, mask_key
from modelbridge.llm.decoders import (
    Completion,
    OpenAIDeltaDecoder,
    decode_completion,
    extract_xml_fallback,
)
from modelbridge.llm.decoders.completion import parse_openai_completion
from modelbridge.llm.errors import (
    UpstreamError,
    annotate,
    error_from_exception,
)
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

CHAT_PATH = "/chat/completions"


def to_wire_messages(
    messages: list[ChatMessage], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    """Canonical messages -> OpenAI ``messages`` array."""
    wire: list[dict[str, Any]] = []
    if system_prompt:
        wire.append({"role": "system", "content": system_prompt})
    for msg in messages:
        if msg.role == MessageRole.TOOL:
            if not msg.tool_result_for:
                logger.warning("Tool result message %s has no tool call id", msg.id)
            wire.append({
                "role": "tool",
                "tool_call_id": msg.tool_result_for or "",
                "content": msg.content or "",
            })
            continue
        m: dict[str, Any] = {"role": msg.role.value, "content": msg.content or ""}
        if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
            m["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.input),
                    },
                }
                for tc in msg.tool_calls
            ]
        wire.append(m)
    return wire


def to_wire_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


class OpenAICompatProvider:
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    config:
        Provider settings; empty fields fall back to the preset.
    preset:
        Vendor defaults.  Chosen from ``config.kind`` when omitted.
    proxy:
        ``ProxyResolver`` (or anything with ``proxy_for``).
    transport:
        Optional httpx transport, used by tests.
    """

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
            config.effective_kind, PROVIDER_PRESETS["openai-compatible"]
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
        headers = self._build_headers(rt)
        if rt.preset.health_probe == "models":
            report = await rt.probe(lambda: rt.send_probe(headers, "GET", "/models"))
        else:
            body = {
                "model": rt.model,
                "messages": [{"role": "user", "content": HEALTH_PROBE_PROMPT}],
                "max_tokens": HEALTH_PROBE_MAX_TOKENS,
                "temperature": 0,
            }
            report = await rt.probe(lambda: rt.send_probe(headers, "POST", CHAT_PATH, body))
        return report.status

    async def chat(self, request: ChatRequest) -> ChatResponse:
        rt = self._runtime
        try:
            rt.require_configured()
            completion = await self._complete(rt, request, include_tools=True)
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
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
        }
        if rt.preset.sends_auth and rt.api_key:
            headers["Authorization"] = f"Bearer {rt.api_key}"
        return headers

    def _build_body(
        self,
        rt: ProviderRuntime,
        request: ChatRequest,
        *,
        stream: bool,
        include_tools: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model or rt.model,
            "messages": to_wire_messages(request.messages, request.system_prompt),
            "max_tokens": request.max_tokens or rt.config.max_tokens,
            "temperature": (
                request.temperature if request.temperature is not None else rt.temperature
            ),
            "stream": stream,
        }
        if include_tools and request.tools:
            check_tool_specs(request.tools)
            body["tools"] = to_wire_tools(request.tools)
            body["tool_choice"] = "auto"
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d stream=%s api_key=%s",
            rt.name,
            body["model"],
            len(body.get("tools", [])),
            len(body["messages"]),
            stream,
            mask_key(rt.api_key),
        )
        return body

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _complete(
        self, rt: ProviderRuntime, request: ChatRequest, *, include_tools: bool
    ) -> Completion:
        """
        One non-streaming round trip.  Servers that reject the ``tools``
        field with a 400 are asked again without it.
        """
        headers = self._build_headers(rt)
        body = self._build_body(rt, request, stream=False, include_tools=include_tools)
        try:
            data = await rt.post_json(CHAT_PATH, body, headers)
        except UpstreamError as exc:
            if exc.status_code != 400 or "tools" not in body:
                raise
            logger.warning("%s: request with tools failed (400), retrying without tools", rt.name)
            body = self._build_body(rt, request, stream=False, include_tools=False)
            data = await rt.post_json(CHAT_PATH, body, headers)
        return extract_xml_fallback(parse_openai_completion(data))

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
                logger.info("%s: streaming disabled, using non-streaming fallback", rt.name)
                completion = await self._complete(rt, request, include_tools=True)
                for event in decode_completion(completion):
                    yield event
                return

            body = self._build_body(rt, request, stream=True, include_tools=True)
            headers = self._build_headers(rt, stream=True)
            try:
                async with rt.stream(CHAT_PATH, body, headers) as response:
                    async for event in rt.events(OpenAIDeltaDecoder(), response, token):
                        if isinstance(event, StreamError):
                            event = StreamError(message=f"{prefix}: {event.message}")
                        yield event
                    return
            except UpstreamError as exc:
                if exc.status_code != 400 or "tools" not in body:
                    raise
            logger.warning(
                "%s: streaming with tools failed (400), falling back to non-streaming", rt.name
            )
            completion = await self._complete(rt, request, include_tools=False)
            for event in decode_completion(completion):
                yield event
        except Exception as exc:
            err = error_from_exception(exc, rt.name)
            logger.error("%s: %s", prefix, err)
            yield StreamError(message=f"{prefix}: {err}")
