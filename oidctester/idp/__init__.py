"""Mock OpenID Connect identity provider."""

from oidctester.idp.cache import AuthorizationCodeCache
from oidctester.idp.provider import MockIdentityProvider, append_query_params

__all__ = [
    "AuthorizationCodeCache",
    "MockIdentityProvider",
    "append_query_params",
]
