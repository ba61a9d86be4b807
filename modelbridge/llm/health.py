"""Provider health classification."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from modelbridge.llm.errors import (
    AuthenticationError,
    ProviderTimeoutError,
    RateLimitError,
    error_from_exception,
)
from modelbridge.llm.types import HealthStatus

logger = logging.getLogger(__name__)

HEALTH_PROBE_PROMPT = "Hi"
HEALTH_PROBE_MAX_TOKENS = 1

_UNAUTHORIZED_MARKERS = ("401", "unauthorized", "invalid key", "invalid api key")
_RATE_LIMIT_MARKERS = ("429", "rate limit")
_TIMEOUT_MARKERS = ("timeout", "timed out")


@dataclass
class HealthReport:
    status: HealthStatus
    latency_ms: float | None = None
    error: str | None = None
    checked_at: float = 0.0


def classify_exception(exc: BaseException) -> HealthStatus:
    """
    Map a failed probe to a health status.

    Typed errors decide first; anything untyped falls back to matching on
    the message text.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return HealthStatus.DEGRADED
    typed = error_from_exception(exc)
    if isinstance(typed, ProviderTimeoutError):
        return HealthStatus.DEGRADED
    if isinstance(typed, AuthenticationError):
        return HealthStatus.UNHEALTHY
    if isinstance(typed, RateLimitError):
        return HealthStatus.DEGRADED

    text = str(exc).lower()
    if any(m in text for m in _TIMEOUT_MARKERS):
        return HealthStatus.DEGRADED
    if any(m in text for m in _UNAUTHORIZED_MARKERS):
        return HealthStatus.UNHEALTHY
    if any(m in text for m in _RATE_LIMIT_MARKERS):
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


async def probe_health(
    probe: Callable[[], Awaitable[bool]], label: str = "provider"
) -> HealthReport:
    """
    Run *probe* once and classify the outcome.

    The probe returns ``True`` for a successful response and ``False`` when
    the transport worked but the response was unsuccessful.
    """
    started = time.monotonic()
    try:
        ok = await probe()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        status = classify_exception(exc)
        logger.info("%s health check failed (%s): %s", label, status.value, exc)
        return HealthReport(status=status, error=str(exc), checked_at=time.time())
    latency_ms = (time.monotonic() - started) * 1000.0
    status = HealthStatus.HEALTHY if ok else HealthStatus.DEGRADED
    logger.debug("%s health %s in %.0fms", label, status.value, latency_ms)
    return HealthReport(status=status, latency_ms=latency_ms, checked_at=time.time())
