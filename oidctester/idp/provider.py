"""Mock OpenID Connect identity provider.

Issues single-use authorization codes bound to a PKCE challenge and exchanges
them for signed ID tokens. No user authentication takes place: any redirect
target and challenge are accepted and a code is issued unconditionally. This is
a test double for exercising relying-party code handling, not a real
authorization server.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oidctester.core.crypto.tokens import SIGNING_ALGORITHM, SigningKey, sign_id_token
from oidctester.core.exceptions import PKCEMismatchError, UnknownCodeError
from oidctester.core.pkce import CODE_CHALLENGE_METHOD, verify_code_challenge
from oidctester.idp.cache import AuthorizationCodeCache

if TYPE_CHECKING:
    from oidctester.core.config import IdPSettings

logger = logging.getLogger("oidctester.idp")

DEFAULT_ISSUER = "http://localhost:8000"
DEFAULT_SUBJECT = "mock-user"


def append_query_params(url: str, params: dict[str, str]) -> str:
    """Append query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class MockIdentityProvider:
    """Authorization code issuing and redemption for the mock IdP."""

    def __init__(
        self,
        signing_key: SigningKey,
        issuer: str = DEFAULT_ISSUER,
        subject: str = DEFAULT_SUBJECT,
        codes: AuthorizationCodeCache[str] | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            signing_key: Key used to sign ID tokens.
            issuer: Issuer URL; also the base of every published endpoint.
            subject: Fixed ``sub`` claim of issued tokens.
            codes: Authorization code cache (created with defaults if omitted).
        """
        self.signing_key = signing_key
        self.issuer = issuer.rstrip("/")
        self.subject = subject
        self.codes: AuthorizationCodeCache[str] = codes if codes is not None else AuthorizationCodeCache()

    @classmethod
    def from_settings(cls, settings: IdPSettings, signing_key: SigningKey | None = None) -> MockIdentityProvider:
        """Build a provider from IdP settings.

        The signing key is, in order: the one given, the one stored at
        ``settings.signing_key_path``, or a freshly generated key.
        """
        if signing_key is not None:
            logger.info(f"Using supplied signing key '{signing_key.kid}'")
        elif settings.signing_key_path and settings.signing_key_path.exists():
            signing_key = SigningKey.load(settings.signing_key_path)
            logger.info(f"Loaded signing key '{signing_key.kid}' from {settings.signing_key_path}")
        else:
            signing_key = SigningKey.generate(kid=settings.key_id)
            logger.info(f"Generated ephemeral signing key '{signing_key.kid}'")

        codes: AuthorizationCodeCache[str] = AuthorizationCodeCache(
            default_ttl=settings.code_ttl_seconds,
            sweep_interval=settings.sweep_interval_seconds,
        )
        return cls(signing_key, issuer=settings.issuer, subject=settings.subject, codes=codes)

    def start(self) -> None:
        """Start background expiry of authorization codes."""
        self.codes.start()

    def close(self) -> None:
        """Stop background expiry."""
        self.codes.stop()

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.issuer}/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.issuer}/token"

    @property
    def jwks_uri(self) -> str:
        return f"{self.issuer}/jwks.json"

    def discovery_document(self) -> dict[str, Any]:
        """OpenID Connect discovery document for this provider."""
        return {
            "issuer": self.issuer,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "jwks_uri": self.jwks_uri,
            "response_types_supported": ["code"],
            "response_modes_supported": ["query"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": [SIGNING_ALGORITHM],
            "code_challenge_methods_supported": [CODE_CHALLENGE_METHOD],
            "grant_types_supported": ["authorization_code"],
            "scopes_supported": ["openid"],
        }

    def jwks(self) -> dict[str, Any]:
        """Public JSON Web Key Set."""
        return self.signing_key.jwks()

    def issue_code(self, code_challenge: str) -> str:
        """Issue a fresh authorization code bound to a PKCE challenge."""
        code = self.codes.add_unique(code_challenge)
        logger.info("Issued authorization code")
        return code

    def authorization_redirect(self, redirect_uri: str, code_challenge: str, state: str | None = None) -> str:
        """Issue a code and build the redirect back to the client.

        Returns:
            ``redirect_uri`` with ``code`` (and ``state``, when given) appended.
        """
        params = {"code": self.issue_code(code_challenge)}
        if state is not None:
            params["state"] = state
        return append_query_params(redirect_uri, params)

    def redeem(self, code: str | None, code_verifier: str | None) -> str:
        """Exchange an authorization code for a signed ID token.

        The code is consumed only when the verifier matches its challenge.

        Raises:
            UnknownCodeError: If the code is missing, unknown or expired.
            PKCEMismatchError: If the verifier does not hash to the stored challenge.
        """
        if not code:
            raise UnknownCodeError("Missing authorization code")

        challenge = self.codes.pop_if(code, lambda stored: verify_code_challenge(code_verifier, stored))
        if challenge is None:
            if self.codes.get(code) is None:
                logger.warning("Token request with unknown or expired authorization code")
                raise UnknownCodeError("Authorization code is unknown or expired")
            logger.warning("Token request failed PKCE verification; code left redeemable")
            raise PKCEMismatchError("Code verifier does not match the code challenge")

        token = sign_id_token(self.signing_key, issuer=self.issuer, subject=self.subject)
        logger.info(f"Redeemed authorization code, issued ID token for '{self.subject}'")
        return token
