"""Proxy-aware client IP resolution."""

from .core.config import DEFAULT_HEADER_KEYS, ResolverConfig, TrustMode
from .core.proxy_spec import ExactAddress, InvalidProxySpec, Subnet, parse_proxy_spec
from .core.resolver import ClientIPResolver
from .core.sources import EnvironSource, RequestSource, StarletteRequestSource
from .version import __version__

__all__ = [
    "ClientIPResolver",
    "DEFAULT_HEADER_KEYS",
    "EnvironSource",
    "ExactAddress",
    "InvalidProxySpec",
    "RequestSource",
    "ResolverConfig",
    "StarletteRequestSource",
    "Subnet",
    "TrustMode",
    "__version__",
    "parse_proxy_spec",
]
