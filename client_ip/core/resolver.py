"""
Client IP resolution.

Determines the address downstream code should treat as the client's when
a request may have passed through reverse proxies or load balancers.

Forwarding headers are attacker-controllable, so a forwarded address is
only adopted when the configuration says the direct peer may be trusted:

- UNTRUSTED: headers are ignored, the observed peer address is returned
- ALWAYS: the first valid forwarded address wins (proxy mode)
- LIST: the forwarded address is adopted only if the observed peer
  matches one of the trusted addresses or subnets

A resolver is meant to live for one request. Its cache is a single slot
on the instance and is cleared atomically whenever the configuration
changes.
"""

import logging
import threading
from typing import Any, NamedTuple

from .config import (
    UNSET,
    ResolverConfig,
    TrustMode,
)
from .proxy_spec import (
    ProxySpec,
    is_valid_ip,
)
from .sources import RequestSource

logger = logging.getLogger(__name__)


def first_hop(
    value: str,
) -> str:
    """Return the left-most entry of a comma separated hop chain.

    "203.0.113.5, 10.0.0.1" -> "203.0.113.5"
    """
    return value.split(",", 1)[0].strip()


class Resolution(NamedTuple):
    """Outcome of one resolution together with its inputs."""

    client_ip: str | None
    remote_addr: str | None
    forwarded_ip: str | None
    trust_mode: TrustMode


class ClientIPResolver:
    """Resolve the real client address of a single request."""

    def __init__(
        self,
        source: RequestSource,
        config: ResolverConfig | None = None,
    ):
        self._source = source
        self._config = config if config is not None else ResolverConfig()
        self._cached_ip: str | None = None
        self._lock = threading.Lock()

    @property
    def config(self) -> ResolverConfig:
        return self._config

    @property
    def source(self) -> RequestSource:
        return self._source

    def set_config(
        self,
        config: ResolverConfig,
    ) -> "ClientIPResolver":
        """Replace the configuration and drop any cached result."""
        with self._lock:
            self._config = config
            self._cached_ip = None
        return self

    def configure(
        self,
        proxy_ips: Any = UNSET,
        header_keys: Any = UNSET,
        disable_cache: bool = False,
    ) -> "ClientIPResolver":
        """Update the configuration.

        proxy_ips and header_keys keep their current values when omitted.
        disable_cache is always reset to the given value.

        Args:
            proxy_ips: True for proxy mode, an address, or a list of
                addresses/subnets; None or empty trusts nobody
            header_keys: Header keys to scan, replacing the current list
            disable_cache: Recompute on every resolve() call

        Returns:
            The resolver, for chaining
        """
        with self._lock:
            self._config = self._config.replace(
                proxy_ips=proxy_ips,
                header_keys=header_keys,
                disable_cache=disable_cache,
            )
            self._cached_ip = None
        return self

    def proxy_mode(self) -> "ClientIPResolver":
        """Trust forwarding headers from any peer."""
        with self._lock:
            self._config = self._config.replace(proxy_ips=True)
            self._cached_ip = None
        return self

    def clear_cache(self) -> None:
        with self._lock:
            self._cached_ip = None

    def observed_address(self) -> str | None:
        """Return the direct peer address, or None if missing or invalid."""
        remote_addr = self._source.remote_addr()
        if remote_addr is None:
            return None
        remote_addr = remote_addr.strip()
        if not is_valid_ip(remote_addr):
            logger.warning(f"Ignoring invalid peer address '{remote_addr}'")
            return None
        return remote_addr

    def first_valid_forwarded_address(
        self,
        header_keys: tuple[str, ...] | None = None,
    ) -> str | None:
        """Scan forwarding headers in priority order.

        Only the left-most hop of each header is considered. The first
        header yielding a valid IP address wins.

        Args:
            header_keys: Keys to scan, defaults to the configured list

        Returns:
            The forwarded address, or None if no header holds a valid one
        """
        keys = self._config.header_keys if header_keys is None else header_keys
        for key in keys:
            value = self._source.header(key)
            if not value:
                continue

            candidate = first_hop(value)
            if is_valid_ip(candidate):
                return candidate

            logger.warning(f"Malformed IP in {key} header, ignoring")
        return None

    def matching_proxy_spec(
        self,
        observed: str,
        config: ResolverConfig | None = None,
    ) -> ProxySpec | None:
        """Return the first trusted proxy spec matching the observed address."""
        config = self._config if config is None else config
        if not is_valid_ip(observed):
            return None
        for spec in config.proxy_specs:
            if spec.matches(observed):
                return spec
        return None

    def _choose(
        self,
        config: ResolverConfig,
        observed: str,
        forwarded: str | None,
    ) -> str:
        """Pick between the peer and the forwarded address for a known peer."""
        if config.trust_mode == TrustMode.UNTRUSTED or forwarded is None:
            return observed

        if config.trust_mode == TrustMode.ALWAYS:
            logger.debug(f"Proxy mode: using forwarded address {forwarded}")
            return forwarded

        spec = self.matching_proxy_spec(observed, config)
        if spec is None:
            logger.debug(
                f"Peer {observed} is not a trusted proxy, "
                f"ignoring forwarded address {forwarded}"
            )
            return observed

        logger.debug(
            f"Peer {observed} matches trusted proxy {spec}, "
            f"using forwarded address {forwarded}"
        )
        return forwarded

    def _resolve_uncached(
        self,
        config: ResolverConfig,
    ) -> str | None:
        observed = self.observed_address()
        if observed is None:
            logger.debug("No peer address available, client IP is unknown")
            return None

        # Headers are never read unless they could be trusted.
        forwarded = None
        if config.trust_mode != TrustMode.UNTRUSTED:
            forwarded = self.first_valid_forwarded_address(config.header_keys)
        return self._choose(config, observed, forwarded)

    def _store(
        self,
        config: ResolverConfig,
        client_ip: str | None,
    ) -> None:
        self._cached_ip = None if config.disable_cache else client_ip

    def resolve(self) -> str | None:
        """Return the client address, or None if it cannot be determined."""
        with self._lock:
            config = self._config
            if not config.disable_cache and self._cached_ip is not None:
                return self._cached_ip

            client_ip = self._resolve_uncached(config)
            self._store(config, client_ip)
            return client_ip

    def resolve_details(self) -> Resolution:
        """Resolve the client address and report the inputs it came from.

        The peer address and the forwarding headers are each read exactly
        once, and the forwarded address is reported in every trust mode.
        The cache is refreshed with the result.
        """
        with self._lock:
            config = self._config
            observed = self.observed_address()
            forwarded = self.first_valid_forwarded_address(config.header_keys)

            client_ip = None
            if observed is not None:
                client_ip = self._choose(config, observed, forwarded)

            self._store(config, client_ip)
            return Resolution(
                client_ip=client_ip,
                remote_addr=observed,
                forwarded_ip=forwarded,
                trust_mode=config.trust_mode,
            )
