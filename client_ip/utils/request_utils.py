"""
Shared request utilities for extracting client information.

Provides validated, safe extraction of the client IP from proxied requests.
Forwarding headers are only honoured when the direct peer is trusted by
the resolver configuration.
"""

import logging
from collections.abc import Mapping
from typing import Any

from fastapi import Request

from ..core.config import ResolverConfig, load_config_from_env
from ..core.resolver import ClientIPResolver
from ..core.sources import EnvironSource, StarletteRequestSource

logger = logging.getLogger(__name__)


def get_resolver(
    request: Request,
    config: ResolverConfig | None = None,
) -> ClientIPResolver:
    """Create a resolver scoped to one FastAPI request.

    Args:
        request: FastAPI Request object
        config: Configuration snapshot, defaults to the environment config

    Returns:
        A fresh ClientIPResolver with its own cache
    """
    if config is None:
        config = load_config_from_env()
    return ClientIPResolver(StarletteRequestSource(request), config)


def get_client_ip(
    request: Request,
    config: ResolverConfig | None = None,
) -> str | None:
    """
    Extract the client IP from a request, honouring forwarding headers
    only when the peer is a trusted proxy.

    Every returned value is a well-formed IP address, so it is safe to
    use in logs and responses.

    Args:
        request: FastAPI Request object
        config: Configuration snapshot, defaults to the environment config

    Returns:
        A validated IP address string, or None if unavailable.
    """
    return get_resolver(request, config).resolve()


def get_client_ip_from_environ(
    environ: Mapping[str, Any],
    config: ResolverConfig | None = None,
) -> str | None:
    """Extract the client IP from a WSGI environ.

    Args:
        environ: WSGI environ holding REMOTE_ADDR and HTTP_* keys
        config: Configuration snapshot, defaults to the environment config

    Returns:
        A validated IP address string, or None if unavailable.
    """
    if config is None:
        config = load_config_from_env()
    return ClientIPResolver(EnvironSource(environ), config).resolve()
