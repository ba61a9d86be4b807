"""
Shared provider plumbing.

``ProviderRuntime`` is the piece every concrete provider composes: an
immutable configuration snapshot plus the HTTP, retry, health and
validation behaviour that does not depend on the wire format.  A provider
that is reconfigured builds a new runtime; requests already in flight keep
the snapshot they started with.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

import httpx

from modelbridge.config import ProviderConfig, mask_key
from modelbridge.llm.decoders import StreamDecoder, decode_stream
from modelbridge.llm.errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderTimeoutError,
    UpstreamError,
    error_from_exception,
    error_from_response,
)
from modelbridge.llm.health import HealthReport, probe_health
from modelbridge.llm.providers.presets import ProviderPreset
from modelbridge.llm.retry import RetryPolicy, SleepFn, with_retry
from modelbridge.llm.stream import CancellationToken
from modelbridge.llm.types import HealthStatus, StreamEvent, ValidationResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderRuntime:
    """
    Parameters
    ----------
    config:
        Frozen provider settings.
    preset:
        Vendor defaults for whatever ``config`` leaves empty.
    proxy:
        Anything with ``proxy_for(url) -> str | None``; ``None`` lets httpx
        honour the usual proxy environment variables.
    transport:
        Injected httpx transport (tests use ``httpx.MockTransport``).
    sleep:
        Backoff sleep, replaceable so tests need not wait.
    """

    def __init__(
        self,
        config: ProviderConfig,
        preset: ProviderPreset,
        *,
        proxy: Any = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.preset = preset
        self._proxy = proxy
        self._transport = transport
        self._sleep = sleep
        self.last_health: HealthReport | None = None

    # ------------------------------------------------------------------
    # Resolved settings
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.preset.display_name

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.preset.default_base_url).rstrip("/")

    @property
    def model(self) -> str:
        return self.config.model or self.preset.default_model

    @property
    def api_key(self) -> str:
        return self.config.resolved_api_key()

    @property
    def temperature(self) -> float:
        if self.config.temperature is not None:
            return self.config.temperature
        return self.preset.default_temperature

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(retries=self.config.retries)

    def is_configured(self) -> bool:
        if not self.base_url:
            return False
        return bool(self.api_key) or not self.preset.requires_api_key

    def require_configured(self) -> None:
        if not self.is_configured():
            raise ConfigurationError(
                f"{self.display_name} provider is not configured", self.name
            )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def client(self, headers: dict[str, str]) -> httpx.AsyncClient:
        kwargs: dict[str, Any] = {
            "base_url": self.base_url,
            "headers": headers,
            "timeout": self.config.timeout,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self._proxy is not None:
            kwargs["trust_env"] = False
            proxy_url = self._proxy.proxy_for(self.base_url)
            if proxy_url:
                kwargs["proxy"] = proxy_url
        return httpx.AsyncClient(**kwargs)

    async def retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        return await with_retry(
            operation,
            self.retry_policy,
            sleep=self._sleep,
            label=f"{self.name} {label}",
        )

    async def post_json(
        self, path: str, body: dict[str, Any], headers: dict[str, str]
    ) -> dict[str, Any]:
        """POST *body* and return the decoded JSON document, with retries."""

        async def attempt() -> dict[str, Any]:
            try:
                async with self.client(headers) as client:
                    response = await client.post(path, json=body)
            except httpx.HTTPError as exc:
                raise error_from_exception(exc, self.name) from exc
            if not response.is_success:
                raise error_from_response(response, self.name)
            try:
                data = response.json()
            except ValueError as exc:
                raise UpstreamError(
                    f"invalid JSON in response: {exc}", response.status_code, self.name
                ) from exc
            if not isinstance(data, dict):
                raise UpstreamError(
                    "response body is not a JSON object", response.status_code, self.name
                )
            return data

        return await self.retry(attempt, "request")

    @contextlib.asynccontextmanager
    async def stream(
        self, path: str, body: dict[str, Any], headers: dict[str, str]
    ) -> AsyncIterator[httpx.Response]:
        """
        Open a streaming POST.

        Connecting and the status check are retried; once bytes are flowing
        nothing is.  Leaving the context (normally, by error, or because the
        consuming generator was closed) releases the response and client.
        """
        client = self.client(headers)
        try:

            async def connect() -> httpx.Response:
                request = client.build_request("POST", path, json=body)
                try:
                    response = await client.send(request, stream=True)
                except httpx.HTTPError as exc:
                    raise error_from_exception(exc, self.name) from exc
                if not response.is_success:
                    await response.aread()
                    await response.aclose()
                    raise error_from_response(response, self.name)
                return response

            response = await self.retry(connect, "stream")
            try:
                yield response
            finally:
                await response.aclose()
        finally:
            await client.aclose()

    async def events(
        self,
        decoder: StreamDecoder,
        response: httpx.Response,
        token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        """Feed the response body through *decoder*, stopping on cancel."""
        try:
            async for event in decode_stream(
                decoder, response.aiter_bytes(), should_stop=lambda: token.cancelled
            ):
                yield event
        except httpx.HTTPError as exc:
            raise error_from_exception(exc, self.name) from exc
        if decoder.skipped_frames:
            logger.debug("%s: skipped %d malformed frame(s)", self.name, decoder.skipped_frames)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def send_probe(
        self,
        headers: dict[str, str],
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> bool:
        """
        One unretried request.  Returns whether it succeeded; rejected
        credentials and timeouts raise so they classify correctly.
        """
        try:
            async with self.client(headers) as client:
                response = await client.request(method, path, json=body)
        except httpx.HTTPError as exc:
            raise error_from_exception(exc, self.name) from exc
        if response.is_success:
            return True
        err = error_from_response(response, self.name)
        if isinstance(err, (AuthenticationError, ProviderTimeoutError)):
            raise err
        logger.info("%s health probe got HTTP %d", self.name, response.status_code)
        return False

    async def probe(self, probe: Callable[[], Awaitable[bool]]) -> HealthReport:
        if not self.validate().valid:
            report = HealthReport(
                status=HealthStatus.UNHEALTHY,
                error="invalid configuration",
                checked_at=time.time(),
            )
        else:
            report = await probe_health(probe, label=self.name)
        self.last_health = report
        return report

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        cfg = self.config

        if self.preset.requires_api_key and not self.api_key:
            if cfg.api_key_env:
                errors.append(f"API key is required (${cfg.api_key_env} is not set)")
            else:
                errors.append("API key is required")

        if not cfg.base_url:
            if self.preset.requires_base_url or not self.preset.default_base_url:
                errors.append("Base URL is required")
            else:
                warnings.append("No base URL specified, using provider default")

        if not cfg.model:
            warnings.append(f"No model specified, using default {self.preset.default_model}")

        if cfg.max_tokens < 1:
            errors.append("Max tokens must be greater than 0")

        if cfg.temperature is not None and not 0 <= cfg.temperature <= 2:
            warnings.append("Temperature should be between 0 and 2")

        return ValidationResult(
            valid=not errors,
            errors=errors or None,
            warnings=warnings or None,
        )

    def describe(self) -> str:
        return (
            f"{self.name} ({self.preset.kind}) base_url={self.base_url} "
            f"model={self.model} api_key={mask_key(self.api_key)}"
        )
