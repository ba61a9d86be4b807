"""Build a provider instance from its configuration."""

from __future__ import annotations

from typing import Any

import httpx

from modelbridge.config import ProviderConfig
from modelbridge.llm.errors import ConfigurationError
from modelbridge.llm.providers.anthropic import AnthropicProvider
from modelbridge.llm.providers.base import Provider
from modelbridge.llm.providers.openai_compat import OpenAICompatProvider
from modelbridge.llm.providers.presets import PROVIDER_PRESETS, preset_for


def build_provider(
    config: ProviderConfig,
    proxy: Any = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Provider:
    """
    Pick the provider class for ``config.kind`` (or ``config.name``).

    Raises ``ConfigurationError`` for an unknown kind.
    """
    preset = preset_for(config.effective_kind, config.base_url)
    if preset is None:
        known = ", ".join(sorted(PROVIDER_PRESETS))
        raise ConfigurationError(
            f"unknown provider kind {config.effective_kind!r} (known: {known})",
            config.name,
        )
    if preset.wire == "anthropic":
        return AnthropicProvider(config, preset=preset, proxy=proxy, transport=transport)
    return OpenAICompatProvider(config, preset=preset, proxy=proxy, transport=transport)
