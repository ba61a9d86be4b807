"""Per-vendor defaults for the two wire families."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from modelbridge.llm.types import ProviderCapability

_CHAT_CAPS = frozenset({
    ProviderCapability.CHAT,
    ProviderCapability.COMMAND_GENERATION,
    ProviderCapability.COMMAND_EXPLANATION,
    ProviderCapability.STREAMING,
})


@dataclass(frozen=True)
class ProviderPreset:
    kind: str
    display_name: str
    wire: Literal["openai", "anthropic"]
    default_base_url: str = ""
    default_model: str = ""
    requires_api_key: bool = True
    requires_base_url: bool = False
    sends_auth: bool = True
    # "chat" sends a one-token request; "models" lists models (local servers).
    health_probe: Literal["chat", "models"] = "chat"
    default_temperature: float = 0.7
    capabilities: frozenset[ProviderCapability] = _CHAT_CAPS


PROVIDER_PRESETS: dict[str, ProviderPreset] = {
    p.kind: p
    for p in (
        ProviderPreset(
            kind="openai",
            display_name="OpenAI",
            wire="openai",
            default_base_url="https://api.openai.com/v1",
            default_model="gpt-4",
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="openai-compatible",
            display_name="OpenAI compatible",
            wire="openai",
            default_model="gpt-3.5-turbo",
            requires_base_url=True,
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="vllm",
            display_name="vLLM",
            wire="openai",
            default_base_url="http://localhost:8000/v1",
            default_model="meta-llama/Llama-3.1-8B",
            requires_api_key=False,
            health_probe="models",
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="ollama",
            display_name="Ollama",
            wire="openai",
            default_base_url="http://localhost:11434/v1",
            default_model="llama3.1",
            requires_api_key=False,
            sends_auth=False,
            health_probe="models",
        ),
        ProviderPreset(
            kind="glm",
            display_name="GLM",
            wire="openai",
            default_base_url="https://open.bigmodel.cn/api/paas/v4",
            default_model="glm-4",
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="anthropic",
            display_name="Anthropic",
            wire="anthropic",
            default_base_url="https://api.anthropic.com",
            default_model="claude-3-sonnet-20240229",
            default_temperature=1.0,
            capabilities=_CHAT_CAPS
            | {ProviderCapability.REASONING, ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="minimax",
            display_name="MiniMax",
            wire="anthropic",
            default_base_url="https://api.minimaxi.com/anthropic",
            default_model="MiniMax-M2",
            default_temperature=1.0,
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
        ProviderPreset(
            kind="glm-anthropic",
            display_name="GLM",
            wire="anthropic",
            default_base_url="https://open.bigmodel.cn/api/anthropic",
            default_model="glm-4.6",
            default_temperature=1.0,
            capabilities=_CHAT_CAPS | {ProviderCapability.FUNCTION_CALL},
        ),
    )
}


def preset_for(kind: str, base_url: str = "") -> ProviderPreset | None:
    """Look up a preset.  GLM switches wire family on an ``/anthropic`` URL."""
    if kind == "glm" and "/anthropic" in base_url:
        kind = "glm-anthropic"
    return PROVIDER_PRESETS.get(kind)
