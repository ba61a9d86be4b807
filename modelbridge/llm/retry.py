"""
Retry with exponential backoff.

    delay(attempt) = 2 ** attempt * base_delay      # 1s, 2s, 4s, ...

Configuration and authentication failures are never retried; neither is
an ``UpstreamError`` for a 4xx status other than 429.  Cancellation
(``asyncio.CancelledError``) propagates immediately.  When every attempt
fails the last error is re-raised unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from modelbridge.llm.errors import ProviderError, error_from_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    retries: int = 3
    base_delay: float = 1.0

    def delay(self, attempt: int) -> float:
        return (2 ** attempt) * self.base_delay

    @property
    def max_attempts(self) -> int:
        return 1 + max(self.retries, 0)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return error_from_exception(exc).retryable


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run *operation* until it succeeds or the policy is exhausted.

    Non-``ProviderError`` exceptions are mapped through
    ``error_from_exception`` only to decide retryability; the caller still
    sees the original exception object.
    """
    policy = policy or RetryPolicy()
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_attempt = attempt >= policy.max_attempts - 1
            if last_attempt or not is_retryable(exc):
                if not last_attempt:
                    logger.debug("%s: not retrying %s", label, type(exc).__name__)
                raise
            wait = policy.delay(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label,
                attempt + 1,
                policy.max_attempts,
                exc,
                wait,
            )
            await sleep(wait)
    raise RuntimeError("unreachable")  # pragma: no cover
