"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags

A config file looks like::

    active: anthropic
    log_level: INFO
    providers:
      anthropic:
        api_key_env: ANTHROPIC_API_KEY
        model: claude-3-5-sonnet-latest
      local:
        kind: ollama
        model: llama3.1
    proxy:
      enabled: true
      https_proxy: http://127.0.0.1:7890
    health:
      cache_ttl: 60
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx
import yaml

from modelbridge.network.proxy import ProxyConfig, ProxyResolver

if TYPE_CHECKING:
    from modelbridge.llm.registry import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.modelbridge/config.yaml"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderConfig:
    """
    Immutable settings for one provider instance.

    ``kind`` selects the backend family and preset (``openai``, ``vllm``,
    ``anthropic`` ...); it defaults to ``name`` so a provider called
    ``ollama`` needs no explicit kind.
    """

    name: str
    kind: str = ""
    display_name: str = ""
    api_key: str = ""
    api_key_env: str = ""
    base_url: str = ""
    model: str = ""
    max_tokens: int = 1000
    temperature: float | None = None
    timeout: float = 30.0
    retries: int = 3
    enabled: bool = True
    disable_streaming: bool = False
    context_window: int | None = None

    @property
    def effective_kind(self) -> str:
        return self.kind or self.name

    def replace(self, **changes: Any) -> ProviderConfig:
        return dataclasses.replace(self, **changes)

    def resolved_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env, "")
        return ""

    def to_dict(self, mask_secrets: bool = True) -> dict[str, Any]:
        d = asdict(self)
        if mask_secrets and d.get("api_key"):
            d["api_key"] = mask_key(d["api_key"])
        return d


@dataclass
class HealthConfig:
    cache_ttl: float = 60.0
    check_timeout: float = 10.0


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class BridgeConfig:
    providers: list[ProviderConfig] = field(default_factory=list)
    active: str = ""
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    log_level: str = "INFO"
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    def provider(self, name: str) -> ProviderConfig | None:
        for pc in self.providers:
            if pc.name == name:
                return pc
        return None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["providers"] = [pc.to_dict() for pc in self.providers]
        if d["proxy"].get("password"):
            d["proxy"]["password"] = "***"
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def mask_key(key: str) -> str:
    """Keep a short prefix of a secret for log lines."""
    if not key:
        return "(none)"
    return f"{key[:6]}***" if len(key) > 10 else "***"


def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


def _build_providers(raw: Any) -> list[ProviderConfig]:
    """
    Providers may be given as a mapping ``name -> settings`` or as a list of
    settings that each carry a ``name``.
    """
    if isinstance(raw, dict):
        items = [{**(v or {}), "name": k} for k, v in raw.items()]
    elif isinstance(raw, list):
        items = [item for item in raw if isinstance(item, dict)]
    else:
        items = []
    providers = []
    for item in items:
        if not item.get("name"):
            logger.warning("Skipping provider entry without a name: %s", sorted(item))
            continue
        providers.append(_build_section(ProviderConfig, item))
    return providers


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "MODELBRIDGE_ACTIVE":             ("active", str),
    "MODELBRIDGE_LOG_LEVEL":          ("log_level", str),
    "MODELBRIDGE_PROXY_ENABLED":      ("proxy.enabled", bool),
    "MODELBRIDGE_HTTP_PROXY":         ("proxy.http_proxy", str),
    "MODELBRIDGE_HTTPS_PROXY":        ("proxy.https_proxy", str),
    "MODELBRIDGE_NO_PROXY":           ("proxy.no_proxy", list),
    "MODELBRIDGE_HEALTH_CACHE_TTL":   ("health.cache_ttl", float),
    "MODELBRIDGE_HEALTH_TIMEOUT":     ("health.check_timeout", float),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
) -> BridgeConfig:
    """
    Build a BridgeConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if not isinstance(file_data, dict):
                raise ValueError(f"{p}: top level must be a mapping")
            raw = _deep_merge(raw, file_data)
            logger.debug("Loaded config file %s", p)

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)
        else:
            logger.warning("Profile %r not found in config", profile)

    # --- Build sections from raw ---
    cfg = BridgeConfig(
        providers=_build_providers(raw.get("providers")),
        active=str(raw.get("active") or ""),
        proxy=_build_section(ProxyConfig, raw.get("proxy") or {}),
        health=_build_section(HealthConfig, raw.get("health") or {}),
        log_level=str(raw.get("log_level") or "INFO"),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg


def build_registry(
    cfg: BridgeConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderRegistry:
    """Construct every configured provider and register it."""
    # Deferred: the provider modules import ProviderConfig from here.
    from modelbridge.llm.providers import build_provider
    from modelbridge.llm.registry import ProviderRegistry

    resolver = ProxyResolver(cfg.proxy)
    registry = ProviderRegistry(
        health_cache_ttl=cfg.health.cache_ttl,
        health_check_timeout=cfg.health.check_timeout,
    )
    for pc in cfg.providers:
        registry.register(build_provider(pc, proxy=resolver, transport=transport))
    if cfg.active and not registry.set_active(cfg.active):
        logger.warning("Configured active provider %r is not registered", cfg.active)
    return registry
