"""OIDC discovery document and JWKS retrieval.

Both documents are fetched with the same discipline: the request must succeed
with a 2xx status and return JSON (one check), and the JSON must match its
schema (a second check). A failure is logged as a failed check and propagated
so that dependent stages do not run.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit, urlunsplit

import httpx

from oidctester.core.checks import CheckLog, assert_ok
from oidctester.core.oidc.models import JSONWebKeySet, OIDCConfig

DISCOVERY_PATH = "/.well-known/openid-configuration"

CONFIG_FETCHED = f"{DISCOVERY_PATH} can be fetched and is valid JSON"
CONFIG_VALID = f"{DISCOVERY_PATH} is a valid OpenID Connect config doc"
JWKS_FETCHED = "JWKS (jwks_uri) can be fetched and is valid JSON"
JWKS_VALID = "JWKS is a valid JSON Web Key Set"


def discovery_url(base_url: str) -> str:
    """Return the discovery document URL for a provider base URL.

    The base URL's path, query and fragment are replaced.
    """
    parts = urlsplit(base_url)
    return urlunsplit((parts.scheme, parts.netloc, DISCOVERY_PATH, "", ""))


def get_json(http: httpx.Client, url: str, request_description: str) -> Any:
    """GET a URL, requiring a 2xx status and a JSON body."""
    response = http.get(url, headers={"Accept": "application/json"})
    return assert_ok(response, request_description).json()


def fetch_config(http: httpx.Client, checks: CheckLog, base_url: str) -> OIDCConfig:
    """Fetch and validate the provider's discovery document.

    Args:
        http: HTTP client used for the request.
        checks: Check log receiving the fetch and schema checks.
        base_url: Provider base URL.

    Returns:
        The validated configuration.

    Raises:
        httpx.HTTPError: On transport failure.
        ResponseStatusError: On a non-2xx response.
        ValueError: If the body is not JSON.
        ValidationFailedError: If the document is missing required fields.
    """
    url = discovery_url(base_url)
    document = checks.attempt(
        lambda: get_json(http, url, "Fetching OpenID Connect configuration"),
        CONFIG_FETCHED,
    )
    return checks.validate(document, OIDCConfig, CONFIG_VALID)


def fetch_jwks(http: httpx.Client, checks: CheckLog, config: OIDCConfig) -> JSONWebKeySet:
    """Fetch and validate the JSON Web Key Set published at ``config.jwks_uri``.

    Raises the same errors as ``fetch_config``; a key set carrying private key
    material fails validation.
    """
    document = checks.attempt(
        lambda: get_json(http, config.jwks_uri, "Fetching JWKS"),
        JWKS_FETCHED,
    )
    return checks.validate(document, JSONWebKeySet, JWKS_VALID)
