from modelbridge.network.proxy import ProxyConfig, ProxyResolver

__all__ = ["ProxyConfig", "ProxyResolver"]
