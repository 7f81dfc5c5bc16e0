"""Schemas for documents returned by OIDC providers.

These models validate the discovery document, the JSON Web Key Set and the
token endpoint response. Unknown fields are allowed and retained.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr, model_validator

# If present in a published JWK, these parameters expose private key material
PRIVATE_EC_PARAMS = ("d",)
PRIVATE_RSA_PARAMS = ("d", "dp", "dq", "p", "q", "qi")

# Three base64url segments separated by dots
COMPACT_JWT_PATTERN = r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$"


class OIDCConfig(BaseModel):
    """The minimum interface expected from an OpenID Connect discovery document."""

    model_config = ConfigDict(extra="allow", frozen=True)

    issuer: StrictStr
    authorization_endpoint: StrictStr
    jwks_uri: StrictStr
    token_endpoint: StrictStr


def _reject_private_params(data: Any, params: tuple[str, ...], label: str) -> Any:
    if isinstance(data, dict) and any(data.get(p) for p in params):
        raise ValueError(f"JWKS contains private {label} key information")
    return data


class _BaseJWK(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    kid: StrictStr | None = None
    use: StrictStr | None = None
    alg: StrictStr | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the key as a JWK dictionary."""
        return self.model_dump(exclude_none=True)


class ECKey(_BaseJWK):
    """Public elliptic-curve JWK."""

    kty: Literal["EC"]
    crv: StrictStr | None = None
    x: StrictStr | None = None
    y: StrictStr | None = None

    @model_validator(mode="before")
    @classmethod
    def no_private_material(cls, data: Any) -> Any:
        return _reject_private_params(data, PRIVATE_EC_PARAMS, "EC")


class RSAKey(_BaseJWK):
    """Public RSA JWK."""

    kty: Literal["RSA"]
    n: StrictStr | None = None
    e: StrictStr | None = None

    @model_validator(mode="before")
    @classmethod
    def no_private_material(cls, data: Any) -> Any:
        return _reject_private_params(data, PRIVATE_RSA_PARAMS, "RSA")


JWK = Annotated[ECKey | RSAKey, Field(discriminator="kty")]


class JSONWebKeySet(BaseModel):
    """A public JSON Web Key Set containing at least one EC or RSA key."""

    model_config = ConfigDict(extra="allow", frozen=True)

    keys: list[JWK] = Field(min_length=1)

    def to_dict(self) -> dict[str, Any]:
        """Return the key set as a JWKS dictionary."""
        return {"keys": [k.to_dict() for k in self.keys]}

    def find(self, kid: str | None) -> list[ECKey | RSAKey]:
        """Return keys matching a key ID (all keys when kid is None)."""
        if kid is None:
            return list(self.keys)
        return [k for k in self.keys if k.kid == kid]


class TokenEndpointResponse(BaseModel):
    """Token endpoint response carrying a compact ID token."""

    model_config = ConfigDict(extra="allow", frozen=True)

    id_token: Annotated[StrictStr, Field(pattern=COMPACT_JWT_PATTERN)]
