"""PKCE (Proof Key for Code Exchange) helpers.

Implements the S256 method of RFC 7636: a 43-character verifier derived from
32 random bytes, and its SHA-256 challenge. Both values are unpadded base64url.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass, field

# 32 bytes always encode to 43 unpadded base64url characters
VERIFIER_BYTES = 32
CODE_CHALLENGE_METHOD = "S256"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier from a cryptographically secure source.

    Returns:
        43-character unpadded base64url string.
    """
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def derive_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier.

    Args:
        code_verifier: The code verifier string.

    Returns:
        Unpadded base64url SHA-256 digest of the verifier's ASCII bytes.
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)


def verify_code_challenge(code_verifier: str | None, code_challenge: str | None) -> bool:
    """Check that a verifier hashes to the given challenge.

    Missing or non-ASCII inputs never match.
    """
    if not code_verifier or not code_challenge:
        return False
    try:
        expected = derive_code_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), code_challenge.encode("utf-8"))


@dataclass(frozen=True)
class PKCEPair:
    """A code verifier and its derived challenge."""

    verifier: str = field(repr=False)
    challenge: str
    method: str = CODE_CHALLENGE_METHOD

    @classmethod
    def generate(cls) -> PKCEPair:
        """Create a fresh verifier/challenge pair."""
        verifier = generate_code_verifier()
        return cls(verifier=verifier, challenge=derive_code_challenge(verifier))
