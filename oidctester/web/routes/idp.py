"""Mock identity provider endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from flask import Blueprint, current_app, jsonify, redirect, request

from oidctester.core.exceptions import TokenRequestError

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

    from oidctester.idp.provider import MockIdentityProvider

logger = logging.getLogger("oidctester.idp")

idp_bp = Blueprint("idp", __name__)

PROVIDER_EXTENSION = "oidctester.provider"


def get_provider() -> MockIdentityProvider:
    """Get the provider instance attached to the current app."""
    return current_app.extensions[PROVIDER_EXTENSION]


def _text_error(message: str, status: int = 400) -> tuple[str, int, dict[str, str]]:
    return message, status, {"Content-Type": "text/plain; charset=utf-8"}


@idp_bp.route("/.well-known/openid-configuration")
def openid_configuration() -> WerkzeugResponse:
    """OpenID Connect discovery document."""
    return jsonify(get_provider().discovery_document())


@idp_bp.route("/jwks.json")
def jwks() -> WerkzeugResponse:
    """Public JSON Web Key Set."""
    return jsonify(get_provider().jwks())


@idp_bp.route("/authorize")
def authorize() -> WerkzeugResponse | tuple[str, int, dict[str, str]]:
    """Issue an authorization code and redirect back to the client.

    No user is authenticated. Any redirect_uri and code_challenge are accepted.
    """
    redirect_uri = request.args.get("redirect_uri")
    code_challenge = request.args.get("code_challenge")
    if not redirect_uri:
        return _text_error("redirect_uri is required")
    if not code_challenge:
        return _text_error("code_challenge is required")

    method = request.args.get("code_challenge_method")
    if method and method != "S256":
        logger.warning(f"Ignoring unsupported code_challenge_method '{method}', treating challenge as S256")

    location = get_provider().authorization_redirect(
        redirect_uri,
        code_challenge,
        state=request.args.get("state"),
    )
    return redirect(location, code=302)


@idp_bp.route("/token", methods=["POST"])
def token() -> Any:
    """Redeem an authorization code for a signed ID token."""
    try:
        id_token = get_provider().redeem(
            request.form.get("code"),
            request.form.get("code_verifier"),
        )
    except TokenRequestError as e:
        return _text_error(str(e))
    return jsonify(id_token=id_token)
