"""Concrete LLM providers and the factory that builds them from config."""

from modelbridge.llm.providers.anthropic import AnthropicProvider
from modelbridge.llm.providers.base import Provider, supports
from modelbridge.llm.providers.factory import build_provider
from modelbridge.llm.providers.openai_compat import OpenAICompatProvider
from modelbridge.llm.providers.presets import PROVIDER_PRESETS, ProviderPreset, preset_for
from modelbridge.llm.providers.runtime import ProviderRuntime

__all__ = [
    "AnthropicProvider",
    "OpenAICompatProvider",
    "PROVIDER_PRESETS",
    "Provider",
    "ProviderPreset",
    "ProviderRuntime",
    "build_provider",
    "preset_for",
    "supports",
]
