"""
Provider registry -- holds the configured providers and arbitrates between
them.

The registry is the primary entry point for callers that do not care which
backend answers.  It:

  1. Tracks registered providers and the one currently active.
  2. Caches health checks (per-check timeout, de-duplicated in flight).
  3. Routes chat calls to the active provider, optionally failing over to
     the next enabled provider when one errors.

All mutations are synchronous, so the active pointer is never observed in
an intermediate state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from modelbridge.llm.errors import ConfigurationError, ProviderError
from modelbridge.llm.providers.base import Provider
from modelbridge.llm.stream import CancellationToken, EventStream
from modelbridge.llm.types import ChatRequest, ChatResponse, HealthStatus

logger = logging.getLogger(__name__)

ProviderEventType = Literal["registered", "unregistered", "active_changed", "health_changed"]


@dataclass(frozen=True)
class ProviderEvent:
    type: ProviderEventType
    provider: str | None
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)


ProviderEventListener = Callable[[ProviderEvent], None]


@dataclass
class _HealthEntry:
    status: HealthStatus
    latency_ms: float | None
    checked_at: float  # time.monotonic()


@dataclass
class ProviderHealth:
    provider: str
    status: HealthStatus
    latency_ms: float | None = None
    cached: bool = False


@dataclass
class ValidationSummary:
    provider: str
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class ProviderRegistry:
    """
    Routes chat requests to a named provider and tracks provider health.
    """

    def __init__(
        self,
        *,
        health_cache_ttl: float = 60.0,
        health_check_timeout: float = 10.0,
    ) -> None:
        self._providers: dict[str, Provider] = {}
        self._active: str | None = None
        self._health: dict[str, _HealthEntry] = {}
        self._pending: dict[str, asyncio.Task[HealthStatus]] = {}
        self._listeners: list[ProviderEventListener] = []
        self.health_cache_ttl = health_cache_ttl
        self.health_check_timeout = health_check_timeout

    # ------------------------------------------------------------------
    # Provider management
    # ------------------------------------------------------------------

    def register(self, provider: Provider) -> None:
        """Register *provider* under its name.  Replaces any existing entry."""
        name = provider.name
        if name in self._providers:
            logger.warning("Provider %s is already registered, replacing", name)
            self._health.pop(name, None)
        self._providers[name] = provider
        logger.info("Provider registered: %s", name)
        self._emit("registered", name)
        if self._active is None:
            self.set_active(name)

    def unregister(self, name: str) -> None:
        if name not in self._providers:
            logger.warning("Provider %s not found, cannot unregister", name)
            return
        del self._providers[name]
        self._health.pop(name, None)
        pending = self._pending.pop(name, None)
        if pending is not None:
            pending.cancel()
        logger.info("Provider unregistered: %s", name)

        previous = self._active
        if previous == name:
            remaining = list(self._providers)
            self._active = remaining[0] if remaining else None
            logger.info("Active provider changed: %s -> %s", previous, self._active)
        self._emit("unregistered", name)
        if previous == name:
            self._emit("active_changed", self._active, previous=previous)

    def get(self, name: str) -> Provider | None:
        return self._providers.get(name)

    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def active_name(self) -> str | None:
        """Return the name of the currently active provider (or ``None``)."""
        return self._active

    @property
    def active_provider(self) -> Provider:
        """
        Return the active ``Provider`` instance.

        Raises ``ConfigurationError`` if no provider is active.
        """
        if self._active is None or self._active not in self._providers:
            raise ConfigurationError("No active LLM provider")
        return self._providers[self._active]

    def set_active(self, name: str) -> bool:
        """Switch the active provider.  Returns ``False`` for an unknown name."""
        if name not in self._providers:
            logger.error("Provider %s not found", name)
            return False
        previous = self._active
        self._active = name
        if previous != name:
            logger.info("Active provider changed: %s -> %s", previous, name)
            self._emit("active_changed", name, previous=previous)
        return True

    def enabled_providers(self) -> list[Provider]:
        return [p for p in self._providers.values() if p.is_enabled()]

    def switch_to_next(self) -> bool:
        enabled = self.enabled_providers()
        if not enabled:
            return False
        names = [p.name for p in enabled]
        idx = names.index(self._active) if self._active in names else -1
        return self.set_active(names[(idx + 1) % len(names)])

    def switch_to_previous(self) -> bool:
        enabled = self.enabled_providers()
        if not enabled:
            return False
        names = [p.name for p in enabled]
        idx = names.index(self._active) if self._active in names else 0
        return self.set_active(names[(idx - 1) % len(names)])

    def reset(self) -> None:
        """Forget every provider, the active pointer and all health state."""
        for task in self._pending.values():
            task.cancel()
        self._providers.clear()
        self._active = None
        self._health.clear()
        self._pending.clear()
        logger.info("All providers reset")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def add_listener(self, listener: ProviderEventListener) -> Callable[[], None]:
        """Subscribe to registry events.  Returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self, event_type: ProviderEventType, provider: str | None, **data: Any) -> None:
        event = ProviderEvent(type=event_type, provider=provider, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Provider event listener failed on %s", event_type)

    # ------------------------------------------------------------------
    # Validation and health
    # ------------------------------------------------------------------

    def validate_all(self) -> list[ValidationSummary]:
        results = []
        for name, provider in self._providers.items():
            try:
                v = provider.validate_config()
                results.append(
                    ValidationSummary(name, v.valid, list(v.errors or []), list(v.warnings or []))
                )
            except Exception as exc:
                results.append(
                    ValidationSummary(name, False, [f"Validation error: {exc}"])
                )
        return results

    def _cached(self, name: str) -> _HealthEntry | None:
        entry = self._health.get(name)
        if entry is None:
            return None
        if time.monotonic() - entry.checked_at >= self.health_cache_ttl:
            return None
        return entry

    async def health_of(self, name: str, force_refresh: bool = False) -> HealthStatus:
        """Health of one provider, from cache when fresh."""
        if name not in self._providers:
            return HealthStatus.UNHEALTHY
        if not force_refresh:
            entry = self._cached(name)
            if entry is not None:
                logger.debug("Health check cache hit for %s", name)
                return entry.status
        task = self._pending.get(name)
        if task is None:
            task = asyncio.ensure_future(self._run_health_check(name))
            self._pending[name] = task
            task.add_done_callback(lambda t, n=name: self._forget_pending(n, t))
        else:
            logger.debug("Health check already in progress for %s", name)
        return await asyncio.shield(task)

    def _forget_pending(self, name: str, task: asyncio.Task) -> None:
        if self._pending.get(name) is task:
            del self._pending[name]

    async def _run_health_check(self, name: str) -> HealthStatus:
        provider = self._providers[name]
        started = time.monotonic()
        latency_ms: float | None = None
        try:
            status = await asyncio.wait_for(
                provider.health_check(), timeout=self.health_check_timeout
            )
            latency_ms = (time.monotonic() - started) * 1000.0
        except asyncio.TimeoutError:
            logger.warning(
                "Health check for %s timed out after %.1fs", name, self.health_check_timeout
            )
            status = HealthStatus.DEGRADED
        except Exception as exc:
            logger.warning("Health check failed for %s: %s", name, exc)
            status = HealthStatus.UNHEALTHY

        if name in self._providers:
            previous = self._health.get(name)
            self._health[name] = _HealthEntry(status, latency_ms, time.monotonic())
            if previous is None or previous.status != status:
                self._emit(
                    "health_changed",
                    name,
                    status=status.value,
                    previous=previous.status.value if previous else None,
                )
        logger.debug("Health check completed for %s: %s (%s ms)", name, status.value, latency_ms)
        return status

    async def check_all_health(self, force_refresh: bool = False) -> list[ProviderHealth]:
        names = list(self._providers)
        fresh = {n: self._cached(n) is not None and not force_refresh for n in names}
        statuses = await asyncio.gather(
            *(self.health_of(n, force_refresh) for n in names),
            return_exceptions=True,
        )
        results = []
        for name, status in zip(names, statuses):
            if isinstance(status, BaseException):
                logger.warning("Health check for %s raised %s", name, status)
                status = HealthStatus.UNHEALTHY
            entry = self._health.get(name)
            results.append(
                ProviderHealth(
                    provider=name,
                    status=status,
                    latency_ms=entry.latency_ms if entry else None,
                    cached=fresh[name],
                )
            )
        return results

    async def best_performing(self) -> Provider | None:
        """The healthy provider with the lowest measured latency."""
        health = await self.check_all_health()
        healthy = [h for h in health if h.status == HealthStatus.HEALTHY]
        if not healthy:
            return None
        healthy.sort(key=lambda h: h.latency_ms if h.latency_ms is not None else float("inf"))
        return self._providers.get(healthy[0].provider)

    def clear_health_cache(self, name: str | None = None) -> None:
        if name is None:
            self._health.clear()
        else:
            self._health.pop(name, None)

    def stats(self) -> dict[str, Any]:
        return {
            "total_providers": len(self._providers),
            "enabled_providers": len(self.enabled_providers()),
            "active_provider": self._active,
            "providers": [
                {
                    "name": name,
                    "enabled": p.is_enabled(),
                    "healthy": (
                        name in self._health
                        and self._health[name].status == HealthStatus.HEALTHY
                    ),
                    "cached": name in self._health,
                }
                for name, p in self._providers.items()
            ],
        }

    # ------------------------------------------------------------------
    # Chat routing
    # ------------------------------------------------------------------

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return await self.active_provider.chat(request)

    def chat_stream(
        self, request: ChatRequest, cancel: CancellationToken | None = None
    ) -> EventStream:
        return self.active_provider.chat_stream(request, cancel)

    async def chat_with_failover(self, request: ChatRequest) -> ChatResponse:
        """
        Try the active provider, then every other enabled provider in
        registration order.  The first one that answers becomes active.
        """
        order: list[Provider] = []
        if self._active is not None and self._active in self._providers:
            active = self._providers[self._active]
            if active.is_enabled():
                order.append(active)
        order.extend(p for p in self.enabled_providers() if p.name != self._active)
        if not order:
            raise ConfigurationError("No enabled LLM providers")

        last_error: ProviderError | None = None
        for provider in order:
            try:
                response = await provider.chat(request)
            except ProviderError as exc:
                logger.warning("Provider %s failed, trying next: %s", provider.name, exc)
                last_error = exc
                continue
            if provider.name != self._active:
                self.set_active(provider.name)
            return response
        assert last_error is not None
        raise last_error
