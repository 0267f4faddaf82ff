"""
Resolver configuration.

ResolverConfig is an immutable snapshot of everything the resolver needs:
which peers are trusted to forward client addresses, which headers carry
those addresses (in priority order) and whether results are memoized.
"""

import logging
from collections.abc import Iterable
from enum import StrEnum
from functools import lru_cache
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .proxy_spec import (
    ExactAddress,
    ProxySpec,
    is_valid_ip,
    parse_proxy_spec,
)

logger = logging.getLogger(__name__)


# Header keys use the WSGI/CGI environ form; the first match wins.
DEFAULT_HEADER_KEYS: tuple[str, ...] = (
    "HTTP_CF_CONNECTING_IP",  # CloudFlare
    "HTTP_CLIENT_IP",
    "HTTP_X_FORWARDED_FOR",
    "HTTP_X_FORWARDED",
    "HTTP_X_CLUSTER_CLIENT_IP",
    "HTTP_FORWARDED_FOR",
    "HTTP_FORWARDED",
    "HTTP_VIA",
)


_PROXY_MODE_VALUES = {"*", "true", "all"}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class TrustMode(StrEnum):
    UNTRUSTED = "untrusted"
    ALWAYS = "always"
    LIST = "list"


def parse_proxy_ips(
    proxy_ips: Any,
) -> tuple[TrustMode, tuple[ProxySpec, ...]]:
    """Translate the proxy_ips option into a trust mode and spec list.

    - None, False, "" or an empty sequence: nobody is trusted
    - True: proxy mode, forwarding headers are always trusted
    - a single string: one exact address, ignored if it is not a valid IP
    - a sequence of strings: exact addresses and/or CIDR subnets

    Raises:
        TypeError: If proxy_ips is not one of the shapes above
    """
    if proxy_ips is True:
        return TrustMode.ALWAYS, ()

    if proxy_ips is None or proxy_ips is False:
        return TrustMode.UNTRUSTED, ()

    if isinstance(proxy_ips, str):
        entry = proxy_ips.strip()
        if not entry:
            return TrustMode.UNTRUSTED, ()
        if not is_valid_ip(entry):
            logger.warning(
                f"Ignoring trusted proxy '{proxy_ips}': not a valid IP address"
            )
            return TrustMode.UNTRUSTED, ()
        return TrustMode.LIST, (ExactAddress(address=entry),)

    if isinstance(proxy_ips, (bytes, dict)) or not isinstance(proxy_ips, Iterable):
        raise TypeError(
            f"proxy_ips must be a bool, a string or a sequence of strings, "
            f"got {type(proxy_ips).__name__}"
        )

    specs = tuple(parse_proxy_spec(entry) for entry in proxy_ips)
    if not specs:
        return TrustMode.UNTRUSTED, ()
    return TrustMode.LIST, specs


def _normalize_header_keys(
    header_keys: Any,
) -> tuple[str, ...]:
    if isinstance(header_keys, str):
        return (header_keys,)
    if not isinstance(header_keys, Iterable):
        raise TypeError(
            f"header_keys must be a string or a sequence of strings, "
            f"got {type(header_keys).__name__}"
        )
    return tuple(header_keys)


class ResolverConfig(BaseModel):
    """Immutable resolver configuration."""

    model_config = ConfigDict(frozen=True)

    trust_mode: TrustMode = TrustMode.UNTRUSTED
    proxy_specs: tuple[ProxySpec, ...] = ()
    header_keys: tuple[str, ...] = Field(default=DEFAULT_HEADER_KEYS)
    disable_cache: bool = False

    @model_validator(mode="after")
    def _check_specs_match_mode(self) -> "ResolverConfig":
        if self.trust_mode == TrustMode.LIST and not self.proxy_specs:
            raise ValueError("trust_mode 'list' requires at least one proxy spec")
        if self.trust_mode != TrustMode.LIST and self.proxy_specs:
            raise ValueError(
                f"proxy_specs are only allowed with trust_mode 'list', "
                f"got '{self.trust_mode}'"
            )
        return self

    @classmethod
    def from_options(
        cls,
        proxy_ips: Any = None,
        header_keys: Any = None,
        disable_cache: bool = False,
    ) -> "ResolverConfig":
        """Build a configuration from caller-facing options.

        Args:
            proxy_ips: Trusted proxies, see parse_proxy_ips()
            header_keys: Header keys to scan, replacing the default list
            disable_cache: Recompute on every resolve() call

        Returns:
            A new ResolverConfig
        """
        return cls().replace(
            proxy_ips=proxy_ips,
            header_keys=UNSET if header_keys is None else header_keys,
            disable_cache=disable_cache,
        )

    def replace(
        self,
        proxy_ips: Any = UNSET,
        header_keys: Any = UNSET,
        disable_cache: Any = UNSET,
    ) -> "ResolverConfig":
        """Return a copy with the given options changed.

        Options left unset keep their current value.
        """
        trust_mode, proxy_specs = self.trust_mode, self.proxy_specs
        if proxy_ips is not UNSET:
            trust_mode, proxy_specs = parse_proxy_ips(proxy_ips)

        keys = self.header_keys
        if header_keys is not UNSET:
            keys = _normalize_header_keys(header_keys)

        cache_disabled = self.disable_cache
        if disable_cache is not UNSET:
            cache_disabled = bool(disable_cache)

        return ResolverConfig(
            trust_mode=trust_mode,
            proxy_specs=proxy_specs,
            header_keys=keys,
            disable_cache=cache_disabled,
        )

    def describe_proxies(self) -> str:
        if self.trust_mode == TrustMode.ALWAYS:
            return "*"
        return ",".join(str(spec) for spec in self.proxy_specs)


class ClientIPSettings(BaseSettings):
    """Resolver settings read from CLIENT_IP_* environment variables.

    CLIENT_IP_TRUSTED_PROXIES: comma separated addresses/subnets, or '*'
        to trust forwarding headers from any peer
    CLIENT_IP_HEADER_KEYS: comma separated header keys, replacing the defaults
    CLIENT_IP_DISABLE_CACHE: disable result caching
    """

    model_config = SettingsConfigDict(
        env_prefix="CLIENT_IP_",
        extra="ignore",
    )

    trusted_proxies: Annotated[list[str], NoDecode] = Field(default_factory=list)
    header_keys: Annotated[list[str], NoDecode] = Field(default_factory=list)
    disable_cache: bool = False

    @field_validator("trusted_proxies", "header_keys", mode="before")
    @classmethod
    def _split_comma_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [entry.strip() for entry in value.split(",") if entry.strip()]
        return value

    @property
    def proxy_mode(self) -> bool:
        return (
            len(self.trusted_proxies) == 1
            and self.trusted_proxies[0].lower() in _PROXY_MODE_VALUES
        )

    def to_resolver_config(self) -> ResolverConfig:
        """Translate the settings into a ResolverConfig."""
        proxy_ips: Any = self.trusted_proxies or None
        if self.proxy_mode:
            proxy_ips = True

        return ResolverConfig.from_options(
            proxy_ips=proxy_ips,
            header_keys=self.header_keys or None,
            disable_cache=self.disable_cache,
        )


def config_from_settings(
    settings: ClientIPSettings | None = None,
) -> ResolverConfig:
    """Build a ResolverConfig from settings, reading the environment by default."""
    if settings is None:
        settings = ClientIPSettings()

    config = settings.to_resolver_config()
    logger.info(
        f"Client IP resolver configured: trust_mode={config.trust_mode}, "
        f"proxies='{config.describe_proxies()}', "
        f"headers={len(config.header_keys)}, disable_cache={config.disable_cache}"
    )
    return config


@lru_cache(maxsize=1)
def load_config_from_env() -> ResolverConfig:
    """Return the process-wide configuration read from the environment."""
    return config_from_settings()
