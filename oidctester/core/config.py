"""Settings for the server, the mock IdP and the tester client.

Read from a YAML file, then overridden by OIDCTESTER_* environment variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("oidctester.config")

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".oidctester"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "OIDCTESTER_"


@dataclass
class TLSSettings:
    """TLS/HTTPS configuration settings.

    TLS is enabled when both a certificate and a key path are configured.
    """

    cert_path: Path | None = None
    key_path: Path | None = None

    @property
    def enabled(self) -> bool:
        return self.cert_path is not None and self.key_path is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSSettings:
        """Create TLSSettings from a dictionary."""
        return cls(
            cert_path=Path(data["cert_path"]) if data.get("cert_path") else None,
            key_path=Path(data["key_path"]) if data.get("key_path") else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "key_path": str(self.key_path) if self.key_path else None,
        }


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    tls: TLSSettings = field(default_factory=TLSSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        tls_data = data.get("tls", {})
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 8000),
            debug=data.get("debug", False),
            tls=TLSSettings.from_dict(tls_data) if tls_data else TLSSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "tls": self.tls.to_dict(),
        }


@dataclass
class IdPSettings:
    """Mock identity provider settings."""

    issuer: str = "http://localhost:8000"
    subject: str = "mock-user"
    key_id: str = "mock-idp-key"
    signing_key_path: Path | None = None
    code_ttl_seconds: float = 180.0
    sweep_interval_seconds: float = 120.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdPSettings:
        """Create IdPSettings from a dictionary."""
        return cls(
            issuer=data.get("issuer", "http://localhost:8000"),
            subject=data.get("subject", "mock-user"),
            key_id=data.get("key_id", "mock-idp-key"),
            signing_key_path=Path(data["signing_key_path"]) if data.get("signing_key_path") else None,
            code_ttl_seconds=float(data.get("code_ttl_seconds", 180.0)),
            sweep_interval_seconds=float(data.get("sweep_interval_seconds", 120.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "issuer": self.issuer,
            "subject": self.subject,
            "key_id": self.key_id,
            "signing_key_path": str(self.signing_key_path) if self.signing_key_path else None,
            "code_ttl_seconds": self.code_ttl_seconds,
            "sweep_interval_seconds": self.sweep_interval_seconds,
        }


@dataclass
class ClientSettings:
    """Relying-party settings for the provider under test."""

    oidc_server: str = "http://localhost:8000"
    redirect_uri: str = "http://localhost:8000/tester/callback"
    client_id: str | None = None
    client_secret: str | None = None
    scope: str = "openid"
    timeout: float = 30.0
    verify_tls: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientSettings:
        """Create ClientSettings from a dictionary."""
        return cls(
            oidc_server=data.get("oidc_server", "http://localhost:8000"),
            redirect_uri=data.get("redirect_uri", "http://localhost:8000/tester/callback"),
            client_id=data.get("client_id"),
            client_secret=data.get("client_secret"),
            scope=data.get("scope") or "openid",
            timeout=float(data.get("timeout", 30.0)),
            verify_tls=data.get("verify_tls", True),
        )

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_secrets: If False, the client secret is masked.
        """
        secret = self.client_secret
        if secret and not include_secrets:
            secret = "[REDACTED]"
        return {
            "oidc_server": self.oidc_server,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "client_secret": secret,
            "scope": self.scope,
            "timeout": self.timeout,
            "verify_tls": self.verify_tls,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    idp: IdPSettings = field(default_factory=IdPSettings)
    client: ClientSettings = field(default_factory=ClientSettings)
    log_level: str = "INFO"
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            server=ServerSettings.from_dict(data.get("server") or {}),
            idp=IdPSettings.from_dict(data.get("idp") or {}),
            client=ClientSettings.from_dict(data.get("client") or {}),
            log_level=data.get("log_level", "INFO"),
            config_path=config_path,
        )

    def to_dict(self, include_secrets: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "idp": self.idp.to_dict(),
            "client": self.client.to_dict(include_secrets=include_secrets),
            "log_level": self.log_level,
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(include_secrets=True), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.
    """
    config = AppConfig()

    file_path = config_path or Path(os.environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
            config = AppConfig.from_dict(data, config_path=file_path)
        except (OSError, yaml.YAMLError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Ignoring invalid config file {file_path}: {e}")

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)

    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    if os.environ.get(f"{ENV_PREFIX}TLS_CERT"):
        config.server.tls.cert_path = Path(os.environ[f"{ENV_PREFIX}TLS_CERT"])

    if os.environ.get(f"{ENV_PREFIX}TLS_KEY"):
        config.server.tls.key_path = Path(os.environ[f"{ENV_PREFIX}TLS_KEY"])

    # Mock IdP settings
    idp = config.idp

    if os.environ.get(f"{ENV_PREFIX}ISSUER"):
        idp.issuer = os.environ[f"{ENV_PREFIX}ISSUER"]

    if os.environ.get(f"{ENV_PREFIX}SUBJECT"):
        idp.subject = os.environ[f"{ENV_PREFIX}SUBJECT"]

    if os.environ.get(f"{ENV_PREFIX}SIGNING_KEY"):
        idp.signing_key_path = Path(os.environ[f"{ENV_PREFIX}SIGNING_KEY"])

    idp.code_ttl_seconds = _get_env_float(f"{ENV_PREFIX}CODE_TTL", idp.code_ttl_seconds)
    idp.sweep_interval_seconds = _get_env_float(f"{ENV_PREFIX}SWEEP_INTERVAL", idp.sweep_interval_seconds)

    # Client settings
    client = config.client

    if os.environ.get(f"{ENV_PREFIX}OIDC_SERVER"):
        client.oidc_server = os.environ[f"{ENV_PREFIX}OIDC_SERVER"]

    if os.environ.get(f"{ENV_PREFIX}REDIRECT_URI"):
        client.redirect_uri = os.environ[f"{ENV_PREFIX}REDIRECT_URI"]

    if os.environ.get(f"{ENV_PREFIX}CLIENT_ID"):
        client.client_id = os.environ[f"{ENV_PREFIX}CLIENT_ID"]

    if os.environ.get(f"{ENV_PREFIX}CLIENT_SECRET"):
        client.client_secret = os.environ[f"{ENV_PREFIX}CLIENT_SECRET"]

    if os.environ.get(f"{ENV_PREFIX}SCOPE"):
        client.scope = os.environ[f"{ENV_PREFIX}SCOPE"]

    client.verify_tls = _get_env_bool(f"{ENV_PREFIX}VERIFY_TLS", client.verify_tls)

    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.log_level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]

    return config
