"""
Unit tests for the client address API routes.

Runs the FastAPI app through TestClient with the ASGI peer address
rewritten, since the test transport has no real socket.
"""

import logging
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from client_ip.core.config import ResolverConfig
from client_ip.main import LOG_FORMAT, create_app
from client_ip.version import __version__


logger = logging.getLogger(__name__)


# =============================================================================
# FIXTURES
# =============================================================================


def _with_peer(app, client):
    """Wrap an ASGI app so every HTTP request comes from the given peer."""

    async def asgi(scope, receive, send):
        if scope["type"] == "http":
            scope = dict(scope, client=client)
        await app(scope, receive, send)

    return asgi


@pytest.fixture
def make_client():
    """Build a TestClient for an app with the given config and peer."""

    def _make(
        config: ResolverConfig | None = None,
        client: tuple[str, int] | None = ("192.168.0.10", 50000),
    ) -> TestClient:
        app = create_app(config if config is not None else ResolverConfig())
        return TestClient(_with_peer(app, client))

    return _make


# =============================================================================
# TEST: /api/version
# =============================================================================


@pytest.mark.unit
@pytest.mark.api
class TestVersionEndpoint:
    """Tests for the version endpoint."""

    def test_returns_version(self, make_client):
        """Test that the package version is returned."""
        response = make_client().get("/api/version")

        assert response.status_code == 200
        assert response.json() == {"version": __version__}


# =============================================================================
# TEST: /api/client-ip
# =============================================================================


@pytest.mark.unit
@pytest.mark.api
class TestClientIpEndpoint:
    """Tests for the client address endpoint."""

    def test_untrusted_reports_peer(self, make_client):
        """Test that headers are reported but not adopted by default."""
        response = make_client(client=("198.51.100.9", 1234)).get(
            "/api/client-ip",
            headers={"X-Forwarded-For": "203.0.113.5"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["client_ip"] == "198.51.100.9"
        assert data["remote_addr"] == "198.51.100.9"
        assert data["forwarded_ip"] == "203.0.113.5"
        assert data["trust_mode"] == "untrusted"

    def test_trusted_subnet_adopts_header(self, make_client):
        """Test that a trusted proxy's forwarded address is used."""
        config = ResolverConfig.from_options(proxy_ips=["192.168.0.0/16"])
        response = make_client(config, ("192.168.4.100", 1234)).get(
            "/api/client-ip",
            headers={"X-Forwarded-For": "203.0.113.5, 192.168.4.100"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["client_ip"] == "203.0.113.5"
        assert data["remote_addr"] == "192.168.4.100"
        assert data["trust_mode"] == "list"

    def test_proxy_mode_without_header(self, make_client):
        """Test that proxy mode falls back to the peer address."""
        config = ResolverConfig.from_options(proxy_ips=True)
        response = make_client(config).get("/api/client-ip")

        assert response.status_code == 200
        data = response.json()
        assert data["client_ip"] == "192.168.0.10"
        assert data["forwarded_ip"] is None
        assert data["trust_mode"] == "always"

    def test_missing_peer_is_unprocessable(self, make_client):
        """Test that an unknown peer address yields 422."""
        response = make_client(client=None).get("/api/client-ip")

        assert response.status_code == 422
        assert response.json()["detail"] == "Unable to determine client address"

    def test_non_ip_peer_is_unprocessable(self, make_client):
        """Test that a non-IP peer (e.g. the test transport name) yields 422."""
        response = make_client(client=("testclient", 50000)).get("/api/client-ip")

        assert response.status_code == 422

    def test_malformed_header_logged_once(self, make_client, caplog):
        """Test that one request reports a malformed header a single time."""
        config = ResolverConfig.from_options(proxy_ips=True)
        response = make_client(config).get(
            "/api/client-ip",
            headers={"X-Forwarded-For": "garbage"},
        )

        assert response.status_code == 200
        assert response.json()["client_ip"] == "192.168.0.10"
        assert caplog.text.count("Malformed IP in HTTP_X_FORWARDED_FOR header") == 1

    def test_environment_config_fallback(self, monkeypatch):
        """Test that an app without config reads the environment."""
        monkeypatch.setenv("CLIENT_IP_TRUSTED_PROXIES", "*")
        app = create_app()
        client = TestClient(_with_peer(app, ("10.0.0.1", 1234)))

        response = client.get(
            "/api/client-ip",
            headers={"X-Forwarded-For": "203.169.1.37"},
        )

        assert response.status_code == 200
        assert response.json()["client_ip"] == "203.169.1.37"


# =============================================================================
# TEST: create_app
# =============================================================================


@pytest.mark.unit
@pytest.mark.api
class TestCreateApp:
    """Tests for the application factory."""

    def test_import_does_not_configure_logging(self):
        """Test that importing the module leaves logging alone."""
        import importlib

        import client_ip.main

        with patch("logging.basicConfig") as mock_basic_config:
            importlib.reload(client_ip.main)

        mock_basic_config.assert_not_called()

    def test_create_app_configures_logging(self):
        """Test that create_app sets up logging with the service format."""
        with patch("client_ip.main.logging.basicConfig") as mock_basic_config:
            app = create_app(ResolverConfig())

        mock_basic_config.assert_called_once_with(
            level=logging.INFO,
            format=LOG_FORMAT,
        )
        assert app.state.client_ip_config == ResolverConfig()
