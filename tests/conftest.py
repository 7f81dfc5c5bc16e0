"""Pytest configuration and fixtures."""

import base64
import json
import logging
from collections.abc import Callable, Generator
from typing import Any

import httpx
import pytest
from click.testing import CliRunner
from flask import Flask
from flask.testing import FlaskClient
from jwt.algorithms import ECAlgorithm

from oidctester.app import close_app, create_app
from oidctester.core.config import ClientSettings
from oidctester.core.crypto.tokens import SigningKey
from oidctester.core.logging import ProtocolLogger, set_protocol_logger
from oidctester.idp.provider import MockIdentityProvider
from oidctester.web.routes.idp import PROVIDER_EXTENSION
from oidctester.web.routes.tester import TRANSPORT_EXTENSION

ISSUER = "http://localhost:8000"
REDIRECT_URI = "http://localhost:8000/tester/callback"


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Undo handlers and the global protocol logger installed by configure_logging."""
    yield
    logger = logging.getLogger("oidctester")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    set_protocol_logger(ProtocolLogger())


@pytest.fixture
def signing_key() -> SigningKey:
    """A fresh P-256 signing key."""
    return SigningKey.generate(kid="test-key")


@pytest.fixture
def app(signing_key: SigningKey) -> Generator[Flask, None, None]:
    """Application whose tester endpoints call its own IdP in-process."""
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "IDP_ISSUER": ISSUER,
            "IDP_SIGNING_KEY": signing_key,
            "IDP_START_SWEEPER": False,
            "CLIENT_OIDC_SERVER": ISSUER,
            "CLIENT_REDIRECT_URI": REDIRECT_URI,
        }
    )
    app.extensions[TRANSPORT_EXTENSION] = httpx.WSGITransport(app=app)
    yield app
    close_app(app)


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def provider(app: Flask) -> MockIdentityProvider:
    """The app's mock identity provider."""
    return app.extensions[PROVIDER_EXTENSION]


@pytest.fixture
def wsgi_transport(app: Flask) -> httpx.WSGITransport:
    """httpx transport routing requests to the app in-process."""
    return httpx.WSGITransport(app=app)


@pytest.fixture
def client_settings() -> ClientSettings:
    """Relying-party settings pointing at the in-process mock IdP."""
    return ClientSettings(oidc_server=ISSUER, redirect_uri=REDIRECT_URI)


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


@pytest.fixture
def forge_token() -> Callable[[SigningKey, dict[str, Any], dict[str, Any]], str]:
    """ES256-sign a token with an arbitrary header, bypassing PyJWT's header checks."""

    def forge(key: SigningKey, header: dict[str, Any], claims: dict[str, Any]) -> str:
        signing_input = f"{_b64url(json.dumps(header).encode())}.{_b64url(json.dumps(claims).encode())}"
        signature = ECAlgorithm(ECAlgorithm.SHA256).sign(signing_input.encode(), key._private_key)
        return f"{signing_input}.{_b64url(signature)}"

    return forge
