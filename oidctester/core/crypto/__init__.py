"""ID token signing and verification."""

from oidctester.core.crypto.tokens import (
    ALLOWED_ALGORITHMS,
    SIGNING_ALGORITHM,
    SigningKey,
    VerifiedToken,
    sign_id_token,
    verify_jwt,
)

__all__ = [
    "ALLOWED_ALGORITHMS",
    "SIGNING_ALGORITHM",
    "SigningKey",
    "VerifiedToken",
    "sign_id_token",
    "verify_jwt",
]
