"""Flask application factory."""

from __future__ import annotations

import dataclasses
import os
import secrets
import ssl
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flask import Flask

from oidctester.core.config import AppConfig, ClientSettings, IdPSettings

if TYPE_CHECKING:
    from oidctester.idp.provider import MockIdentityProvider

# Flask config keys that override IdP settings
_IDP_OVERRIDES = {
    "IDP_ISSUER": "issuer",
    "IDP_SUBJECT": "subject",
    "IDP_KEY_ID": "key_id",
    "IDP_CODE_TTL": "code_ttl_seconds",
    "IDP_SWEEP_INTERVAL": "sweep_interval_seconds",
}

# Flask config keys that override tester client settings
_CLIENT_OVERRIDES = {
    "CLIENT_OIDC_SERVER": "oidc_server",
    "CLIENT_REDIRECT_URI": "redirect_uri",
    "CLIENT_ID": "client_id",
    "CLIENT_SECRET": "client_secret",
    "CLIENT_SCOPE": "scope",
}


def _overridden(settings: Any, flask_config: dict[str, Any], keys: dict[str, str]) -> Any:
    changes = {attr: flask_config[key] for key, attr in keys.items() if key in flask_config}
    return dataclasses.replace(settings, **changes) if changes else settings


def _build_provider(app: Flask, idp_settings: IdPSettings) -> MockIdentityProvider:
    from oidctester.idp.provider import MockIdentityProvider

    return MockIdentityProvider.from_settings(idp_settings, signing_key=app.config.get("IDP_SIGNING_KEY"))


def create_app(config: dict[str, Any] | None = None, app_config: AppConfig | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overriding defaults. ``IDP_*`` and
            ``CLIENT_*`` keys override the corresponding settings;
            ``IDP_SIGNING_KEY`` supplies a SigningKey instance;
            ``IDP_START_SWEEPER`` (default True) controls background expiry;
            ``TESTER_MAX_FLOWS`` and ``TESTER_FLOW_IDLE_TIMEOUT`` bound the
            tester's server-side flows.
        app_config: Application settings. Defaults are used if not provided.

    Returns:
        Configured Flask application instance.
    """
    from oidctester.web.routes.idp import PROVIDER_EXTENSION
    from oidctester.web.routes.tester import (
        DEFAULT_IDLE_TIMEOUT_SECONDS,
        DEFAULT_MAX_FLOWS,
        REGISTRY_EXTENSION,
        SETTINGS_EXTENSION,
        FlowRegistry,
    )

    app = Flask(__name__)
    settings = app_config or AppConfig()

    # Sessions only carry a flow id that is meaningless after a restart
    secret_key = os.environ.get("OIDCTESTER_SECRET_KEY") or secrets.token_hex(32)

    app.config.from_mapping(
        SECRET_KEY=secret_key,
        IDP_START_SWEEPER=True,
        TESTER_MAX_FLOWS=DEFAULT_MAX_FLOWS,
        TESTER_FLOW_IDLE_TIMEOUT=DEFAULT_IDLE_TIMEOUT_SECONDS,
    )

    if config:
        app.config.from_mapping(config)

    idp_settings = _overridden(settings.idp, app.config, _IDP_OVERRIDES)
    client_settings: ClientSettings = _overridden(settings.client, app.config, _CLIENT_OVERRIDES)

    registry = FlowRegistry(
        max_flows=app.config["TESTER_MAX_FLOWS"],
        idle_timeout=app.config["TESTER_FLOW_IDLE_TIMEOUT"],
    )
    provider = _build_provider(app, idp_settings)
    if app.config["IDP_START_SWEEPER"]:
        provider.start()

    app.extensions[PROVIDER_EXTENSION] = provider
    app.extensions[REGISTRY_EXTENSION] = registry
    app.extensions[SETTINGS_EXTENSION] = client_settings

    # Register main blueprints
    from oidctester.web import routes

    routes.init_app(app)

    return app


def close_app(app: Flask) -> None:
    """Stop the provider's background expiry and close open tester flows."""
    from oidctester.web.routes.idp import PROVIDER_EXTENSION
    from oidctester.web.routes.tester import REGISTRY_EXTENSION

    app.extensions[REGISTRY_EXTENSION].close()
    app.extensions[PROVIDER_EXTENSION].close()


def create_ssl_context(cert_path: Path, key_path: Path) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the mock IdP and tester with the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.
    """
    from oidctester.core.config import load_config
    from oidctester.core.logging import configure_logging

    if app_config is None:
        app_config = load_config()

    configure_logging(app_config.log_level)

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port
    tls_settings = app_config.server.tls

    app = create_app(app_config=app_config)
    app.debug = app_config.server.debug

    ssl_context: ssl.SSLContext | None = None
    if tls_settings.cert_path is not None and tls_settings.key_path is not None:
        ssl_context = create_ssl_context(tls_settings.cert_path, tls_settings.key_path)
        protocol = "https"
    else:
        protocol = "http"

    print("Starting OIDC tester...")
    print(f"  URL: {protocol}://{server_host}:{server_port}")
    print(f"  Issuer: {app_config.idp.issuer}")
    print(f"  Tester: {protocol}://{server_host}:{server_port}/tester/")
    print("")

    try:
        # The reloader would start a second provider with a different key
        app.run(host=server_host, port=server_port, ssl_context=ssl_context, use_reloader=False)
    finally:
        close_app(app)
