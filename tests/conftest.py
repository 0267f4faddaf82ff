"""Shared fixtures for client IP resolver tests."""

import logging
from typing import Any

import pytest
from fastapi import Request

from client_ip.core.config import load_config_from_env
from client_ip.core.sources import EnvironSource


@pytest.fixture(autouse=True)
def clear_env_config_cache():
    """Environment config is memoized per process; reset it around each test."""
    load_config_from_env.cache_clear()
    yield
    load_config_from_env.cache_clear()


@pytest.fixture
def make_environ():
    """Build a WSGI environ with a peer address and optional headers."""

    def _make(
        remote_addr: str | None = "192.168.0.10",
        **headers: str,
    ) -> dict[str, Any]:
        environ: dict[str, Any] = dict(headers)
        if remote_addr is not None:
            environ["REMOTE_ADDR"] = remote_addr
        return environ

    return _make


@pytest.fixture
def make_source(make_environ):
    """Build an EnvironSource with a peer address and optional headers."""

    def _make(
        remote_addr: str | None = "192.168.0.10",
        **headers: str,
    ) -> EnvironSource:
        return EnvironSource(make_environ(remote_addr, **headers))

    return _make


@pytest.fixture
def make_request():
    """Build a Starlette request from a peer address and HTTP headers."""

    def _make(
        client: tuple[str, int] | None = ("192.168.0.10", 50000),
        headers: dict[str, str] | None = None,
    ) -> Request:
        scope = {
            "type": "http",
            "method": "GET",
            "path": "/",
            "query_string": b"",
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or {}).items()
            ],
            "client": client,
        }
        return Request(scope)

    return _make


@pytest.fixture
def caplog_debug(caplog):
    caplog.set_level(logging.DEBUG, logger="client_ip")
    return caplog
