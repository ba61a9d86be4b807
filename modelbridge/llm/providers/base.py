"""
Provider interface.

A provider is anything that satisfies ``Provider``: there is no base class
to inherit from.  The concrete providers share behaviour by composing a
``ProviderRuntime`` (see ``runtime.py``) instead.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from modelbridge.config import ProviderConfig
from modelbridge.llm.stream import CancellationToken, EventStream
from modelbridge.llm.types import (
    ChatRequest,
    ChatResponse,
    HealthStatus,
    ProviderCapability,
    ValidationResult,
)


@runtime_checkable
class Provider(Protocol):
    """
    A provider encapsulates access to a single LLM endpoint.

    Implementations must support:
      - Non-streaming chat (``chat``), raising ``ProviderError`` on failure.
      - Streaming chat (``chat_stream``), reporting failure as an ``error``
        event instead of raising.
      - Health probing and configuration validation.
    """

    @property
    def name(self) -> str: ...

    @property
    def display_name(self) -> str: ...

    @property
    def capabilities(self) -> frozenset[ProviderCapability]: ...

    @property
    def config(self) -> ProviderConfig: ...

    def configure(self, config: ProviderConfig) -> None: ...

    def is_configured(self) -> bool: ...

    def is_enabled(self) -> bool: ...

    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    def chat_stream(
        self, request: ChatRequest, cancel: CancellationToken | None = None
    ) -> EventStream: ...

    async def health_check(self) -> HealthStatus: ...

    def validate_config(self) -> ValidationResult: ...


def supports(provider: Provider, capability: ProviderCapability) -> bool:
    return capability in provider.capabilities
