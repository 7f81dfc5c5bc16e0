"""Relying-party requests against the provider under test.

Builds the PKCE authorization request URL and performs the authorization code
exchange at the token endpoint.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlencode

import httpx

from oidctester.core.checks import CheckLog, assert_ok
from oidctester.core.crypto.tokens import VerifiedToken, verify_jwt
from oidctester.core.oidc.models import JSONWebKeySet, OIDCConfig, TokenEndpointResponse
from oidctester.core.pkce import CODE_CHALLENGE_METHOD

if TYPE_CHECKING:
    from oidctester.core.config import ClientSettings

DEFAULT_SCOPE = "openid"

TOKEN_RESPONSE_JSON = "Token endpoint returns a JSON response"
TOKEN_CONTAINS_ID_TOKEN = "Token JSON contains id_token, and the token looks like a JWT"
ID_TOKEN_VERIFIED = "ID Token passes JWT verification"


def build_authorization_url(
    config: OIDCConfig,
    settings: ClientSettings,
    code_challenge: str,
    state: str | None = None,
) -> str:
    """Build the authorization request URL for the code flow with PKCE.

    Args:
        config: Provider configuration.
        settings: Client settings (redirect URI, optional client_id and scope).
        code_challenge: S256 challenge derived from the stored verifier.
        state: Optional opaque state value.

    Returns:
        ``authorization_endpoint`` with the request parameters appended.
    """
    params: dict[str, str] = {}
    if settings.client_id:
        params["client_id"] = settings.client_id
    params.update(
        {
            "redirect_uri": settings.redirect_uri,
            "response_type": "code",
            "response_mode": "query",
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
            "scope": settings.scope or DEFAULT_SCOPE,
        }
    )
    if state:
        params["state"] = state

    separator = "&" if "?" in config.authorization_endpoint else "?"
    return f"{config.authorization_endpoint}{separator}{urlencode(params)}"


def token_request_data(settings: ClientSettings, code: str, code_verifier: str) -> dict[str, str]:
    """Form body for the authorization code exchange."""
    data: dict[str, str] = {}
    if settings.client_id:
        data["client_id"] = settings.client_id
    if settings.client_secret:
        data["client_secret"] = settings.client_secret
    data.update(
        {
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": settings.redirect_uri,
        }
    )
    return data


def get_token(
    http: httpx.Client,
    checks: CheckLog,
    config: OIDCConfig,
    settings: ClientSettings,
    code: str,
    code_verifier: str,
) -> str:
    """Exchange an authorization code for an ID token.

    Returns:
        The compact ID token.

    Raises:
        httpx.HTTPError: On transport failure.
        ResponseStatusError: On a non-2xx response.
        ValueError: If the body is not JSON.
        ValidationFailedError: If the response has no JWT-shaped ``id_token``.
    """

    def request_token() -> object:
        response = http.post(
            config.token_endpoint,
            data=token_request_data(settings, code, code_verifier),
            headers={"Accept": "application/json"},
        )
        return assert_ok(response, "Token request").json()

    document = checks.attempt(request_token, TOKEN_RESPONSE_JSON)
    token_response = checks.validate(document, TokenEndpointResponse, TOKEN_CONTAINS_ID_TOKEN)
    return token_response.id_token


def verify_id_token(
    checks: CheckLog,
    token: str,
    jwks: JSONWebKeySet,
    issuer: str | None,
) -> VerifiedToken:
    """Verify an ID token against the provider's key set, logging a check.

    Raises:
        JWTVerificationError: If the token does not verify.
    """
    return checks.attempt(lambda: verify_jwt(token, jwks, issuer=issuer), ID_TOKEN_VERIFIED)
