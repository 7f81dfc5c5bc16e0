"""ID token signing and verification.

The mock identity provider signs ID tokens with a process-held P-256 key
(ES256). The relying-party side verifies tokens against a published JSON Web
Key Set, resolving the key by the token's ``kid`` and checking the issuer.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm
from pydantic import ValidationError

from oidctester.core.exceptions import JWTVerificationError
from oidctester.core.oidc.models import JSONWebKeySet

SIGNING_ALGORITHM = "ES256"
DEFAULT_KEY_ID = "mock-idp-key"

# Asymmetric algorithms only - symmetric algs require a shared secret
ALLOWED_ALGORITHMS = frozenset(
    {
        "RS256",
        "RS384",
        "RS512",
        "ES256",
        "ES384",
        "ES512",
        "PS256",
        "PS384",
        "PS512",
        "EdDSA",
    }
)


@dataclass(frozen=True)
class VerifiedToken:
    """Decoded header and payload of a token that passed verification."""

    header: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def key_id(self) -> str | None:
        return self.header.get("kid")

    @property
    def issuer(self) -> str | None:
        return self.payload.get("iss")

    @property
    def subject(self) -> str | None:
        return self.payload.get("sub")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"protected_header": self.header, "payload": self.payload}


class SigningKey:
    """An EC P-256 private key identified by a key ID."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey, kid: str = DEFAULT_KEY_ID) -> None:
        """Initialize the signing key.

        Args:
            private_key: P-256 private key.
            kid: Key identifier published in the JWKS and token headers.

        Raises:
            ValueError: If the key is not on the P-256 curve.
        """
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise ValueError(f"ES256 requires a P-256 key, got {private_key.curve.name}")
        self._private_key = private_key
        self.kid = kid

    def __repr__(self) -> str:
        return f"SigningKey(kid={self.kid!r})"

    @classmethod
    def generate(cls, kid: str = DEFAULT_KEY_ID) -> SigningKey:
        """Generate a fresh P-256 signing key."""
        return cls(ec.generate_private_key(ec.SECP256R1()), kid=kid)

    @classmethod
    def from_jwk(cls, jwk: dict[str, Any] | str) -> SigningKey:
        """Load a signing key from a private EC JWK.

        Raises:
            ValueError: If the JWK is not a private EC key.
        """
        data = json.loads(jwk) if isinstance(jwk, str) else dict(jwk)
        if data.get("kty") != "EC" or not data.get("d"):
            raise ValueError("Signing key must be a private EC JWK (kty=EC with 'd')")
        private_key = ECAlgorithm.from_jwk(data)
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise ValueError("JWK did not yield an EC private key")
        return cls(private_key, kid=data.get("kid") or DEFAULT_KEY_ID)

    @classmethod
    def load(cls, path: Path) -> SigningKey:
        """Load a signing key from a JWK JSON file."""
        return cls.from_jwk(path.read_text())

    def save(self, path: Path) -> None:
        """Write the private JWK to a file readable only by the owner."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            # An existing file keeps its old mode through O_CREAT
            os.fchmod(f.fileno(), 0o600)
            f.write(json.dumps(self.private_jwk(), indent=2))

    def private_jwk(self) -> dict[str, Any]:
        jwk: dict[str, Any] = ECAlgorithm.to_jwk(self._private_key, as_dict=True)
        jwk["kid"] = self.kid
        return jwk

    def public_jwk(self) -> dict[str, Any]:
        """Public JWK for this key, without private parameters."""
        jwk: dict[str, Any] = ECAlgorithm.to_jwk(self._private_key.public_key(), as_dict=True)
        jwk.update({"kid": self.kid, "use": "sig", "alg": SIGNING_ALGORITHM})
        return jwk

    def jwks(self) -> dict[str, Any]:
        """JSON Web Key Set publishing this key."""
        return {"keys": [self.public_jwk()]}

    def sign(self, claims: dict[str, Any]) -> str:
        """Sign claims as a compact ES256 JWT with this key's kid in the header."""
        return jwt.encode(claims, self._private_key, algorithm=SIGNING_ALGORITHM, headers={"kid": self.kid})


def sign_id_token(
    key: SigningKey,
    issuer: str,
    subject: str,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    """Sign an ID token for the mock identity provider.

    Args:
        key: Signing key.
        issuer: Value of the ``iss`` claim.
        subject: Value of the ``sub`` claim.
        extra_claims: Additional claims merged into the payload.

    Returns:
        Compact JWT string.
    """
    claims: dict[str, Any] = {"iss": issuer, "sub": subject, "iat": int(time.time())}
    if extra_claims:
        claims.update(extra_claims)
    return key.sign(claims)


def _resolve_key(key_set: JSONWebKeySet, kid: str | None) -> jwt.PyJWK:
    candidates = key_set.find(kid)
    if not candidates:
        raise JWTVerificationError(f"No key in JWKS matches kid '{kid}'")
    if len(candidates) > 1:
        if kid is None:
            raise JWTVerificationError("Token has no kid and the JWKS contains more than one key")
        raise JWTVerificationError(f"Multiple keys in JWKS match kid '{kid}'")
    try:
        return jwt.PyJWK.from_dict(candidates[0].to_dict())
    except (jwt.PyJWTError, ValueError) as e:
        raise JWTVerificationError(f"Key '{kid}' in JWKS is not usable: {e}") from e


def verify_jwt(
    token: str,
    jwks: JSONWebKeySet | dict[str, Any],
    issuer: str | None = None,
) -> VerifiedToken:
    """Verify a compact JWT against a JSON Web Key Set.

    Args:
        token: Compact JWT string.
        jwks: Key set containing the signing key.
        issuer: Expected ``iss`` claim; not checked when empty.

    Returns:
        VerifiedToken with the protected header and payload.

    Raises:
        JWTVerificationError: If the format, key lookup, signature or issuer is invalid.
    """
    try:
        header = jwt.get_unverified_header(token)
        unverified = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        raise JWTVerificationError(f"Invalid JWT format: {e}") from e

    alg = header.get("alg")
    if not isinstance(alg, str) or alg not in ALLOWED_ALGORITHMS:
        raise JWTVerificationError(f"Algorithm '{alg}' is not an accepted asymmetric signing algorithm")

    if isinstance(jwks, JSONWebKeySet):
        key_set = jwks
    else:
        try:
            key_set = JSONWebKeySet.model_validate(jwks)
        except ValidationError as e:
            raise JWTVerificationError(f"Invalid JWKS: {e}") from e
    signing_key = _resolve_key(key_set, header.get("kid"))

    try:
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=[alg],
            issuer=issuer or None,
            options={"verify_aud": False},
        )
    except jwt.InvalidSignatureError as e:
        raise JWTVerificationError("Signature verification failed - token may have been tampered with") from e
    except jwt.MissingRequiredClaimError as e:
        raise JWTVerificationError(f"Token is missing required claim: {e.claim}") from e
    except jwt.InvalidIssuerError as e:
        raise JWTVerificationError(
            f"Issuer mismatch: expected '{issuer}', got '{unverified.get('iss')}'"
        ) from e
    except jwt.ExpiredSignatureError as e:
        raise JWTVerificationError("Token has expired") from e
    except jwt.PyJWTError as e:
        raise JWTVerificationError(f"JWT verification failed: {e}") from e

    return VerifiedToken(header=header, payload=payload)
