"""Tests for discovery document and JWKS retrieval."""

import json
from collections.abc import Callable

import httpx
import pytest

from oidctester.core.checks import CheckLog
from oidctester.core.crypto.tokens import SigningKey
from oidctester.core.exceptions import ResponseStatusError, ValidationFailedError
from oidctester.core.oidc.discovery import (
    CONFIG_FETCHED,
    CONFIG_VALID,
    JWKS_FETCHED,
    JWKS_VALID,
    discovery_url,
    fetch_config,
    fetch_jwks,
)
from oidctester.core.oidc.models import OIDCConfig

BASE_URL = "https://idp.example.com"

CONFIG = {
    "issuer": BASE_URL,
    "authorization_endpoint": f"{BASE_URL}/authorize",
    "token_endpoint": f"{BASE_URL}/token",
    "jwks_uri": f"{BASE_URL}/keys",
}


def http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestDiscoveryURL:
    """Tests for discovery URL construction."""

    @pytest.mark.parametrize(
        "base_url",
        [
            "https://idp.example.com",
            "https://idp.example.com/",
            "https://idp.example.com/tenant/login?prompt=none",
        ],
    )
    def test_path_replaced(self, base_url: str) -> None:
        """Test the base URL's path and query are replaced."""
        assert discovery_url(base_url) == "https://idp.example.com/.well-known/openid-configuration"

    def test_port_kept(self) -> None:
        """Test the port is preserved."""
        assert discovery_url("http://localhost:8000") == "http://localhost:8000/.well-known/openid-configuration"


class TestFetchConfig:
    """Tests for fetch_config."""

    def test_valid_config(self) -> None:
        """Test a valid document passes both checks."""
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json=CONFIG)

        checks = CheckLog()
        with http_client(handler) as http:
            config = fetch_config(http, checks, BASE_URL)

        assert requested == [f"{BASE_URL}/.well-known/openid-configuration"]
        assert config.jwks_uri == f"{BASE_URL}/keys"
        assert [(c.description, c.passed) for c in checks] == [(CONFIG_FETCHED, True), (CONFIG_VALID, True)]

    def test_error_status(self) -> None:
        """Test a non-2xx response fails the fetch check and propagates."""
        checks = CheckLog()
        with http_client(lambda r: httpx.Response(404, text="not here")) as http:
            with pytest.raises(ResponseStatusError):
                fetch_config(http, checks, BASE_URL)

        assert len(checks) == 1
        assert checks.checks[0].passed is False
        assert "failed with 404" in checks.checks[0].details

    def test_invalid_json(self) -> None:
        """Test a non-JSON body fails the fetch check."""
        checks = CheckLog()
        with http_client(lambda r: httpx.Response(200, text="<html>login</html>")) as http:
            with pytest.raises(json.JSONDecodeError):
                fetch_config(http, checks, BASE_URL)

        assert [(c.description, c.passed) for c in checks] == [(CONFIG_FETCHED, False)]

    def test_transport_error(self) -> None:
        """Test network failures are logged and propagated unchanged."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        checks = CheckLog()
        with http_client(handler) as http:
            with pytest.raises(httpx.ConnectError):
                fetch_config(http, checks, BASE_URL)

        assert checks.checks[0].details == "connection refused"

    def test_missing_required_field(self) -> None:
        """Test a document without token_endpoint fails the schema check."""
        document = {k: v for k, v in CONFIG.items() if k != "token_endpoint"}
        checks = CheckLog()
        with http_client(lambda r: httpx.Response(200, json=document)) as http:
            with pytest.raises(ValidationFailedError):
                fetch_config(http, checks, BASE_URL)

        assert [(c.description, c.passed) for c in checks] == [(CONFIG_FETCHED, True), (CONFIG_VALID, False)]
        assert "token_endpoint" in checks.checks[1].details


class TestFetchJWKS:
    """Tests for fetch_jwks."""

    def test_valid_jwks(self, signing_key: SigningKey) -> None:
        """Test the JWKS is fetched from jwks_uri and validated."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == f"{BASE_URL}/keys"
            return httpx.Response(200, json=signing_key.jwks())

        checks = CheckLog()
        with http_client(handler) as http:
            jwks = fetch_jwks(http, checks, OIDCConfig.model_validate(CONFIG))

        assert jwks.keys[0].kid == "test-key"
        assert [(c.description, c.passed) for c in checks] == [(JWKS_FETCHED, True), (JWKS_VALID, True)]

    def test_private_material_rejected(self, signing_key: SigningKey) -> None:
        """Test a JWKS leaking the private key fails validation."""
        leaked = {"keys": [signing_key.private_jwk()]}
        checks = CheckLog()
        with http_client(lambda r: httpx.Response(200, json=leaked)) as http:
            with pytest.raises(ValidationFailedError):
                fetch_jwks(http, checks, OIDCConfig.model_validate(CONFIG))

        assert "JWKS contains private EC key information" in checks.checks[1].details
