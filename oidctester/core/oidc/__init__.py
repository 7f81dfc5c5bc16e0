"""OIDC relying-party flow: discovery, code exchange and verification.

Import flow and client objects from their modules; this package only
re-exports the document models, which the crypto package also depends on.
"""

from oidctester.core.oidc.models import (
    JWK,
    ECKey,
    JSONWebKeySet,
    OIDCConfig,
    RSAKey,
    TokenEndpointResponse,
)

__all__ = [
    "JWK",
    "ECKey",
    "JSONWebKeySet",
    "OIDCConfig",
    "RSAKey",
    "TokenEndpointResponse",
]
