"""
Outbound proxy selection.

Providers never talk to the proxy settings directly; they ask a
``ProxyResolver`` which proxy URL (if any) applies to the endpoint they are
about to call and hand that to ``httpx.AsyncClient(proxy=...)``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

import httpx

logger = logging.getLogger(__name__)

DEFAULT_NO_PROXY = ["localhost", "127.0.0.1", "::1", "*.local"]
SUPPORTED_PROXY_SCHEMES = ("http", "https", "socks5", "socks4")


@dataclass
class ProxyConfig:
    enabled: bool = False
    http_proxy: str = ""
    https_proxy: str = ""
    no_proxy: list[str] = field(default_factory=lambda: list(DEFAULT_NO_PROXY))
    username: str = ""
    password: str = ""

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> ProxyConfig:
        """Build a config from ``HTTP_PROXY`` / ``HTTPS_PROXY`` / ``NO_PROXY``."""
        env = os.environ if environ is None else environ
        http_proxy = env.get("HTTP_PROXY") or env.get("http_proxy") or ""
        https_proxy = env.get("HTTPS_PROXY") or env.get("https_proxy") or ""
        raw_no_proxy = env.get("NO_PROXY") or env.get("no_proxy") or ""
        no_proxy = [s.strip() for s in raw_no_proxy.split(",") if s.strip()]
        config = cls(
            enabled=bool(http_proxy or https_proxy),
            http_proxy=http_proxy,
            https_proxy=https_proxy,
            no_proxy=no_proxy,
        )
        logger.info(
            "Proxy config imported from environment (enabled=%s)", config.enabled
        )
        return config


def _hostname(url: str) -> str:
    try:
        host = httpx.URL(url).host
    except httpx.InvalidURL:
        return url
    return host or url


def _with_credentials(proxy_url: str, username: str, password: str) -> str:
    if not username:
        return proxy_url
    try:
        parsed = httpx.URL(proxy_url)
    except httpx.InvalidURL:
        return proxy_url
    if parsed.userinfo:
        return proxy_url
    return str(parsed.copy_with(username=username, password=password or ""))


class ProxyResolver:
    """Answers "which proxy for this URL?" from a ``ProxyConfig``."""

    def __init__(self, config: ProxyConfig | None = None) -> None:
        self.config = config or ProxyConfig()

    def should_bypass(self, url: str) -> bool:
        if not self.config.enabled:
            return True
        hostname = _hostname(url)
        for pattern in self.config.no_proxy:
            if pattern.startswith("*."):
                suffix = pattern[1:]  # ".local"
                if hostname.endswith(suffix) or hostname == suffix[1:]:
                    return True
            elif hostname == pattern or hostname.endswith("." + pattern):
                return True
        return False

    def proxy_for(self, url: str) -> str | None:
        """The proxy URL to use for *url*, or ``None`` for a direct connection."""
        if self.should_bypass(url):
            return None
        if url.startswith("https://"):
            proxy_url = self.config.https_proxy or self.config.http_proxy
        else:
            proxy_url = self.config.http_proxy
        if not proxy_url:
            return None
        return _with_credentials(proxy_url, self.config.username, self.config.password)

    @staticmethod
    def validate_proxy_url(proxy_url: str) -> tuple[bool, str]:
        """Return ``(valid, message)``.  An empty value is valid (no proxy)."""
        if not proxy_url or not proxy_url.strip():
            return True, ""
        try:
            parsed = httpx.URL(proxy_url.strip())
        except httpx.InvalidURL:
            return False, "invalid proxy URL"
        if parsed.scheme not in SUPPORTED_PROXY_SCHEMES:
            return False, (
                f"unsupported scheme: {parsed.scheme or '(none)'}; "
                f"supported: {', '.join(SUPPORTED_PROXY_SCHEMES)}"
            )
        if not parsed.host:
            return False, "invalid proxy URL"
        return True, "proxy URL is well formed"
