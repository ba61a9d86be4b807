"""Tests for modelbridge.llm.registry.ProviderRegistry."""

from __future__ import annotations

import asyncio

import pytest

from modelbridge.llm.errors import ConfigurationError, RateLimitError, TransportError
from modelbridge.llm.registry import ProviderRegistry
from modelbridge.llm.types import ChatMessage, ChatRequest, HealthStatus, MessageRole
from tests.mock_providers import FakeProvider


def _request() -> ChatRequest:
    return ChatRequest(messages=[ChatMessage(role=MessageRole.USER, content="Hi")])


@pytest.fixture
def registry():
    return ProviderRegistry()


class TestRegistration:
    def test_first_registered_becomes_active(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b"))
        assert registry.active_name == "a"
        assert registry.names() == ["a", "b"]
        assert "b" in registry
        assert len(registry) == 2

    def test_unregister_active_falls_back(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b"))

        registry.unregister("a")
        assert registry.active_name == "b"

        registry.unregister("b")
        assert registry.active_name is None
        with pytest.raises(ConfigurationError):
            registry.active_provider

    def test_unregister_unknown_is_noop(self, registry):
        registry.register(FakeProvider("a"))
        registry.unregister("zzz")
        assert registry.names() == ["a"]

    def test_register_replaces_same_name(self, registry):
        first = FakeProvider("a", reply="one")
        second = FakeProvider("a", reply="two")
        registry.register(first)
        registry.register(second)
        assert registry.get("a") is second
        assert len(registry) == 1

    def test_set_active(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b"))
        assert registry.set_active("b")
        assert registry.active_provider.name == "b"
        assert not registry.set_active("missing")
        assert registry.active_name == "b"

    def test_switch_cycles_enabled_only(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("off", enabled=False))
        registry.register(FakeProvider("c"))

        assert registry.switch_to_next()
        assert registry.active_name == "c"
        assert registry.switch_to_next()
        assert registry.active_name == "a"
        assert registry.switch_to_previous()
        assert registry.active_name == "c"

    def test_reset(self, registry):
        registry.register(FakeProvider("a"))
        registry.reset()
        assert len(registry) == 0
        assert registry.active_name is None


class TestEvents:
    def test_lifecycle_events(self, registry):
        seen = []
        registry.add_listener(lambda e: seen.append((e.type, e.provider)))

        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b"))
        registry.set_active("b")
        registry.set_active("b")
        registry.unregister("b")

        assert seen == [
            ("registered", "a"),
            ("active_changed", "a"),
            ("registered", "b"),
            ("active_changed", "b"),
            ("unregistered", "b"),
            ("active_changed", "a"),
        ]

    def test_listeners_see_repointed_active_on_unregister(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b"))
        seen = []
        registry.add_listener(
            lambda e: seen.append((e.type, registry.active_name, e.provider in registry))
        )

        registry.unregister("a")
        registry.unregister("b")

        assert seen == [
            ("unregistered", "b", False),
            ("active_changed", "b", False),
            ("unregistered", None, False),
            ("active_changed", None, False),
        ]

    def test_unsubscribe(self, registry):
        seen = []
        remove = registry.add_listener(seen.append)
        remove()
        registry.register(FakeProvider("a"))
        assert seen == []

    def test_failing_listener_does_not_break_registry(self, registry):
        def boom(event):
            raise RuntimeError("listener bug")

        registry.add_listener(boom)
        registry.register(FakeProvider("a"))
        assert registry.active_name == "a"


class TestHealth:
    async def test_result_is_cached(self, registry):
        provider = FakeProvider("a")
        registry.register(provider)

        assert await registry.health_of("a") is HealthStatus.HEALTHY
        assert await registry.health_of("a") is HealthStatus.HEALTHY
        assert provider.health_calls == 1

        assert await registry.health_of("a", force_refresh=True) is HealthStatus.HEALTHY
        assert provider.health_calls == 2

    async def test_expired_cache_rechecks(self):
        registry = ProviderRegistry(health_cache_ttl=0.0)
        provider = FakeProvider("a")
        registry.register(provider)
        await registry.health_of("a")
        await registry.health_of("a")
        assert provider.health_calls == 2

    async def test_concurrent_checks_are_deduplicated(self, registry):
        provider = FakeProvider("a", health_delay=0.05)
        registry.register(provider)

        results = await asyncio.gather(*(registry.health_of("a") for _ in range(5)))
        assert results == [HealthStatus.HEALTHY] * 5
        assert provider.health_calls == 1

    async def test_timeout_is_degraded(self):
        registry = ProviderRegistry(health_check_timeout=0.05)
        registry.register(FakeProvider("slow", health_delay=1.0))
        assert await registry.health_of("slow") is HealthStatus.DEGRADED

    async def test_exception_is_unhealthy(self, registry):
        provider = FakeProvider("a")

        async def explode():
            raise RuntimeError("probe crashed")

        provider.health_check = explode
        registry.register(provider)
        assert await registry.health_of("a") is HealthStatus.UNHEALTHY

    async def test_unknown_provider_is_unhealthy(self, registry):
        assert await registry.health_of("nobody") is HealthStatus.UNHEALTHY

    async def test_health_changed_event(self, registry):
        provider = FakeProvider("a")
        registry.register(provider)
        changes = []
        registry.add_listener(
            lambda e: changes.append(e.data["status"]) if e.type == "health_changed" else None
        )

        await registry.health_of("a")
        await registry.health_of("a", force_refresh=True)
        provider.health = HealthStatus.DEGRADED
        await registry.health_of("a", force_refresh=True)
        assert changes == ["healthy", "degraded"]

    async def test_check_all_and_best_performing(self, registry):
        registry.register(FakeProvider("slow", health_delay=0.05))
        registry.register(FakeProvider("fast"))
        registry.register(FakeProvider("down", health=HealthStatus.UNHEALTHY))

        results = await registry.check_all_health()
        assert {r.provider: r.status for r in results} == {
            "slow": HealthStatus.HEALTHY,
            "fast": HealthStatus.HEALTHY,
            "down": HealthStatus.UNHEALTHY,
        }
        assert not any(r.cached for r in results)

        best = await registry.best_performing()
        assert best.name == "fast"
        assert all(r.cached for r in await registry.check_all_health())

    async def test_best_performing_none_healthy(self, registry):
        registry.register(FakeProvider("down", health=HealthStatus.UNHEALTHY))
        assert await registry.best_performing() is None

    async def test_stats(self, registry):
        registry.register(FakeProvider("a"))
        registry.register(FakeProvider("b", enabled=False))
        await registry.health_of("a")
        stats = registry.stats()
        assert stats["total_providers"] == 2
        assert stats["enabled_providers"] == 1
        assert stats["active_provider"] == "a"
        assert stats["providers"][0] == {"name": "a", "enabled": True, "healthy": True, "cached": True}

        registry.clear_health_cache()
        assert registry.stats()["providers"][0]["cached"] is False


class TestRouting:
    async def test_chat_goes_to_active(self, registry):
        a, b = FakeProvider("a", reply="from a"), FakeProvider("b", reply="from b")
        registry.register(a)
        registry.register(b)
        registry.set_active("b")

        response = await registry.chat(_request())
        assert response.message.content == "from b"
        assert a.chat_calls == 0

    async def test_chat_stream_goes_to_active(self, registry):
        registry.register(FakeProvider("a", reply="hello there"))
        events = await registry.chat_stream(_request()).collect()
        assert [e.type for e in events] == ["text_delta", "text_delta", "message_end"]
        assert events[-1].message.content == "hello there"

    async def test_chat_without_providers(self, registry):
        with pytest.raises(ConfigurationError):
            await registry.chat(_request())

    async def test_failover_to_next_enabled(self, registry):
        registry.register(FakeProvider("a", error=TransportError("refused")))
        registry.register(FakeProvider("off", enabled=False, reply="never"))
        registry.register(FakeProvider("c", reply="from c"))

        response = await registry.chat_with_failover(_request())
        assert response.message.content == "from c"
        assert registry.active_name == "c"
        assert registry.get("off").chat_calls == 0

    async def test_failover_all_fail_raises_last(self, registry):
        registry.register(FakeProvider("a", error=TransportError("refused")))
        registry.register(FakeProvider("b", error=RateLimitError("slow down")))

        with pytest.raises(RateLimitError, match="slow down"):
            await registry.chat_with_failover(_request())
        assert registry.active_name == "a"

    def test_validate_all(self, registry):
        registry.register(FakeProvider("a"))
        summaries = registry.validate_all()
        assert [(s.provider, s.valid) for s in summaries] == [("a", True)]
