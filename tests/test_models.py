"""Tests for discovery, JWKS and token response schemas."""

import pytest
from pydantic import ValidationError

from oidctester.core.oidc.models import (
    ECKey,
    JSONWebKeySet,
    OIDCConfig,
    RSAKey,
    TokenEndpointResponse,
)

CONFIG = {
    "issuer": "https://idp.example.com",
    "authorization_endpoint": "https://idp.example.com/authorize",
    "token_endpoint": "https://idp.example.com/token",
    "jwks_uri": "https://idp.example.com/jwks.json",
}

EC_KEY = {"kty": "EC", "kid": "ec-1", "crv": "P-256", "x": "x-coord", "y": "y-coord"}
RSA_KEY = {"kty": "RSA", "kid": "rsa-1", "n": "modulus", "e": "AQAB"}


class TestOIDCConfig:
    """Tests for the discovery document model."""

    def test_valid_config_keeps_extra_fields(self) -> None:
        """Test extra fields are allowed and retained."""
        config = OIDCConfig.model_validate({**CONFIG, "userinfo_endpoint": "https://idp.example.com/me"})
        assert config.issuer == "https://idp.example.com"
        assert config.model_extra == {"userinfo_endpoint": "https://idp.example.com/me"}

    @pytest.mark.parametrize("missing", ["issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"])
    def test_missing_required_field(self, missing: str) -> None:
        """Test each required field must be present."""
        data = {k: v for k, v in CONFIG.items() if k != missing}
        with pytest.raises(ValidationError, match=missing):
            OIDCConfig.model_validate(data)

    def test_non_string_field(self) -> None:
        """Test required fields must be strings."""
        with pytest.raises(ValidationError):
            OIDCConfig.model_validate({**CONFIG, "issuer": 42})


class TestJSONWebKeySet:
    """Tests for the JWKS model."""

    def test_ec_and_rsa_keys(self) -> None:
        """Test keys are parsed into their tagged variants."""
        jwks = JSONWebKeySet.model_validate({"keys": [EC_KEY, RSA_KEY]})
        assert isinstance(jwks.keys[0], ECKey)
        assert isinstance(jwks.keys[1], RSAKey)
        assert jwks.to_dict() == {"keys": [EC_KEY, RSA_KEY]}

    def test_find(self) -> None:
        """Test lookup by kid."""
        jwks = JSONWebKeySet.model_validate({"keys": [EC_KEY, RSA_KEY]})
        assert [k.kid for k in jwks.find("rsa-1")] == ["rsa-1"]
        assert jwks.find("missing") == []
        assert len(jwks.find(None)) == 2

    def test_empty_key_set(self) -> None:
        """Test a JWKS must contain at least one key."""
        with pytest.raises(ValidationError):
            JSONWebKeySet.model_validate({"keys": []})

    def test_unknown_key_type(self) -> None:
        """Test key types other than EC and RSA are rejected."""
        with pytest.raises(ValidationError):
            JSONWebKeySet.model_validate({"keys": [{"kty": "oct", "k": "secret"}]})

    def test_ec_private_key_rejected(self) -> None:
        """Test an EC key carrying 'd' is rejected with a descriptive message."""
        with pytest.raises(ValidationError, match="JWKS contains private EC key information"):
            JSONWebKeySet.model_validate({"keys": [{**EC_KEY, "d": "private"}]})

    @pytest.mark.parametrize("param", ["d", "dp", "dq", "p", "q", "qi"])
    def test_rsa_private_key_rejected(self, param: str) -> None:
        """Test an RSA key carrying any private parameter is rejected."""
        with pytest.raises(ValidationError, match="JWKS contains private RSA key information"):
            JSONWebKeySet.model_validate({"keys": [{**RSA_KEY, param: "private"}]})

    def test_empty_private_param_allowed(self) -> None:
        """Test an empty private parameter does not count as key material."""
        JSONWebKeySet.model_validate({"keys": [{**EC_KEY, "d": ""}]})


class TestTokenEndpointResponse:
    """Tests for the token response model."""

    def test_jwt_shaped_token(self) -> None:
        """Test a three-segment token is accepted."""
        response = TokenEndpointResponse.model_validate({"id_token": "aGVhZA.cGF5bG9hZA.c2ln", "token_type": "Bearer"})
        assert response.id_token == "aGVhZA.cGF5bG9hZA.c2ln"

    @pytest.mark.parametrize("token", ["not-a-jwt", "a.b", "a.b.c.d", "a.b.c d"])
    def test_malformed_token(self, token: str) -> None:
        """Test values that are not compact JWTs are rejected."""
        with pytest.raises(ValidationError):
            TokenEndpointResponse.model_validate({"id_token": token})

    def test_missing_token(self) -> None:
        """Test id_token is required."""
        with pytest.raises(ValidationError):
            TokenEndpointResponse.model_validate({"access_token": "abc"})
