"""
Request sources.

The resolver never touches a web framework directly. It reads the
observed peer address and raw header values through a RequestSource, so
the same resolution logic serves WSGI environ dicts, FastAPI/Starlette
requests and tests.

Header keys are always given in WSGI/CGI environ form, e.g.
HTTP_X_FORWARDED_FOR for the X-Forwarded-For header.
"""

from collections.abc import Mapping
from typing import (
    Any,
    Protocol,
    runtime_checkable,
)

from fastapi import Request

REMOTE_ADDR_KEY: str = "REMOTE_ADDR"


@runtime_checkable
class RequestSource(Protocol):
    """Read access to the connection and headers of one request."""

    def remote_addr(self) -> str | None:
        """Return the address of the direct network peer, if known."""
        ...

    def header(
        self,
        key: str,
    ) -> str | None:
        """Return the raw value for an environ-style header key, if present."""
        ...


def _non_empty(
    value: Any,
) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return value


def environ_key_to_header(
    key: str,
) -> str:
    """Convert an environ key to an HTTP header name.

    HTTP_X_FORWARDED_FOR -> x-forwarded-for
    """
    name = key[5:] if key.upper().startswith("HTTP_") else key
    return name.replace("_", "-").lower()


class EnvironSource:
    """RequestSource backed by a WSGI environ (or any CGI-style mapping)."""

    def __init__(
        self,
        environ: Mapping[str, Any],
    ):
        self.environ = environ

    def remote_addr(self) -> str | None:
        return _non_empty(self.environ.get(REMOTE_ADDR_KEY))

    def header(
        self,
        key: str,
    ) -> str | None:
        return _non_empty(self.environ.get(key))

    def __repr__(self) -> str:
        return f"EnvironSource(remote_addr={self.remote_addr()!r})"


class StarletteRequestSource:
    """RequestSource backed by a FastAPI/Starlette request."""

    def __init__(
        self,
        request: Request,
    ):
        self.request = request

    def remote_addr(self) -> str | None:
        client = self.request.client
        if client is None:
            return None
        return _non_empty(client.host)

    def header(
        self,
        key: str,
    ) -> str | None:
        if key.upper() == REMOTE_ADDR_KEY:
            return self.remote_addr()
        return _non_empty(self.request.headers.get(environ_key_to_header(key)))

    def __repr__(self) -> str:
        return f"StarletteRequestSource(remote_addr={self.remote_addr()!r})"
