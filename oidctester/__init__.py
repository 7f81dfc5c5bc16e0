"""OIDC tester - mock PKCE identity provider and relying-party conformance checks."""

__version__ = "0.1.0"
