"""Tests for configuration loading."""

import os
from pathlib import Path

import pytest
import yaml

from oidctester.core.config import AppConfig, ClientSettings, IdPSettings, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Clear OIDCTESTER_* variables and point the default config at a missing file."""
    for key in list(os.environ):
        if key.startswith("OIDCTESTER_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("OIDCTESTER_CONFIG", str(tmp_path / "missing.yaml"))


def write_config(path: Path, data: object) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self) -> None:
        """Test defaults when no file or environment is present."""
        config = load_config()

        assert config.server.port == 8000
        assert config.idp.issuer == "http://localhost:8000"
        assert config.idp.code_ttl_seconds == 180.0
        assert config.client.redirect_uri == "http://localhost:8000/tester/callback"
        assert config.client.scope == "openid"
        assert config.config_path is None

    def test_from_file(self, tmp_path: Path) -> None:
        """Test values are read from a YAML file."""
        path = write_config(
            tmp_path / "config.yaml",
            {
                "server": {"port": 9000, "tls": {"cert_path": "/tmp/c.pem", "key_path": "/tmp/k.pem"}},
                "idp": {"issuer": "https://idp.test", "code_ttl_seconds": 60},
                "client": {"oidc_server": "https://op.test", "client_id": "rp"},
                "log_level": "DEBUG",
            },
        )

        config = load_config(path)

        assert config.server.port == 9000
        assert config.server.tls.enabled
        assert config.idp.issuer == "https://idp.test"
        assert config.idp.code_ttl_seconds == 60.0
        assert config.client.oidc_server == "https://op.test"
        assert config.client.client_id == "rp"
        assert config.log_level == "DEBUG"
        assert config.config_path == path

    def test_config_path_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test OIDCTESTER_CONFIG selects the file."""
        path = write_config(tmp_path / "other.yaml", {"idp": {"subject": "bob"}})
        monkeypatch.setenv("OIDCTESTER_CONFIG", str(path))

        assert load_config().idp.subject == "bob"

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables take precedence."""
        path = write_config(tmp_path / "config.yaml", {"server": {"port": 9000}, "idp": {"issuer": "https://a"}})
        monkeypatch.setenv("OIDCTESTER_PORT", "9100")
        monkeypatch.setenv("OIDCTESTER_ISSUER", "https://b")
        monkeypatch.setenv("OIDCTESTER_CODE_TTL", "5")
        monkeypatch.setenv("OIDCTESTER_SIGNING_KEY", str(tmp_path / "key.json"))
        monkeypatch.setenv("OIDCTESTER_OIDC_SERVER", "https://op.test")
        monkeypatch.setenv("OIDCTESTER_CLIENT_SECRET", "s3cret")
        monkeypatch.setenv("OIDCTESTER_VERIFY_TLS", "false")
        monkeypatch.setenv("OIDCTESTER_LOG_LEVEL", "TRACE")

        config = load_config(path)

        assert config.server.port == 9100
        assert config.idp.issuer == "https://b"
        assert config.idp.code_ttl_seconds == 5.0
        assert config.idp.signing_key_path == tmp_path / "key.json"
        assert config.client.oidc_server == "https://op.test"
        assert config.client.client_secret == "s3cret"
        assert config.client.verify_tls is False
        assert config.log_level == "TRACE"

    def test_bad_numeric_env_keeps_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test unparseable numbers are ignored."""
        monkeypatch.setenv("OIDCTESTER_PORT", "http")
        monkeypatch.setenv("OIDCTESTER_CODE_TTL", "soon")

        config = load_config()
        assert config.server.port == 8000
        assert config.idp.code_ttl_seconds == 180.0

    @pytest.mark.parametrize("content", ["server: [unclosed", "- just\n- a list\n"])
    def test_invalid_file_falls_back(self, tmp_path: Path, content: str) -> None:
        """Test an invalid file is ignored in favour of defaults."""
        path = tmp_path / "config.yaml"
        path.write_text(content)

        config = load_config(path)

        assert config.server.port == 8000
        assert config.config_path is None


class TestSerialization:
    """Tests for settings serialization."""

    def test_client_secret_redacted(self) -> None:
        """Test the client secret is masked unless requested."""
        settings = ClientSettings(client_secret="s3cret")
        assert settings.to_dict()["client_secret"] == "[REDACTED]"
        assert settings.to_dict(include_secrets=True)["client_secret"] == "s3cret"
        assert ClientSettings().to_dict()["client_secret"] is None

    def test_save_and_reload(self, tmp_path: Path) -> None:
        """Test a saved config loads back with secrets intact."""
        config = AppConfig(
            idp=IdPSettings(issuer="https://idp.test", signing_key_path=tmp_path / "key.json"),
            client=ClientSettings(client_id="rp", client_secret="s3cret"),
        )
        path = tmp_path / "nested" / "config.yaml"
        config.save(path)

        loaded = load_config(path)
        assert loaded.idp.issuer == "https://idp.test"
        assert loaded.idp.signing_key_path == tmp_path / "key.json"
        assert loaded.client.client_secret == "s3cret"
        assert loaded.to_dict() == config.to_dict()
