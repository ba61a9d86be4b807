"""
Provider error taxonomy.

Every failure that leaves a provider is one of these.  The retry helper and
the health classifier key off the class, so transport libraries never leak
their own exception types past ``error_from_exception``.
"""

from __future__ import annotations

import httpx


class ProviderError(Exception):
    """Structured error from a provider operation."""

    retryable = True

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class ConfigurationError(ProviderError):
    """Provider missing, not configured, or configured inconsistently."""

    retryable = False


class TransportError(ProviderError):
    """Connection refused, DNS failure, connection reset."""


class ProviderTimeoutError(TransportError):
    """The request did not complete within the configured timeout."""


class AuthenticationError(ProviderError):
    """Credentials rejected (401/403).  Retrying will not help."""

    retryable = False


class RateLimitError(ProviderError):
    """HTTP 429."""


class UpstreamError(ProviderError):
    """Any other non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: int,
        provider: str | None = None,
        body: str = "",
    ):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body
        # 4xx other than 429 means the request itself is wrong.
        self.retryable = status_code >= 500


def _body_excerpt(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (ValueError, httpx.ResponseNotRead):
        try:
            return response.text[:300]
        except httpx.ResponseNotRead:
            return ""
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
        if data.get("message"):
            return str(data["message"])
    return str(data)[:300]


def error_from_response(
    response: httpx.Response, provider: str | None = None
) -> ProviderError:
    """Map a non-2xx response to the taxonomy.  The body must be read."""
    status = response.status_code
    detail = _body_excerpt(response)
    suffix = f": {detail}" if detail else ""
    if status in (401, 403):
        return AuthenticationError(f"HTTP {status} unauthorized{suffix}", provider)
    if status == 429:
        return RateLimitError(f"HTTP 429 rate limited{suffix}", provider)
    if status in (408, 504):
        return ProviderTimeoutError(f"HTTP {status} timeout{suffix}", provider)
    return UpstreamError(f"HTTP {status}{suffix}", status, provider, body=detail)


def error_from_exception(
    exc: BaseException, provider: str | None = None
) -> ProviderError:
    """Wrap an httpx (or other) exception.  ProviderErrors pass through."""
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return ProviderTimeoutError(f"request timeout: {exc}", provider)
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_response(exc.response, provider)
    if isinstance(exc, httpx.TransportError):
        return TransportError(f"transport error: {exc}", provider)
    return ProviderError(str(exc) or type(exc).__name__, provider)


def annotate(error: ProviderError, context: str) -> ProviderError:
    """Prefix *error*'s message with *context* in place, keeping its type."""
    error.args = (f"{context}: {error}",) + tuple(error.args[1:])
    return error
