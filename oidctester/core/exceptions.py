"""Exception hierarchy for the OIDC tester."""

from __future__ import annotations


class OIDCTesterError(Exception):
    """Base exception for all tester errors."""


class ConformanceError(OIDCTesterError):
    """Raised when a provider response violates a protocol expectation."""

    def __init__(self, description: str, details: str | None = None) -> None:
        self.description = description
        self.details = details
        message = f"FAILED: {description}"
        if details:
            message += f"\n{details}"
        super().__init__(message)


class ValidationFailedError(ConformanceError):
    """Raised when a document does not match its expected schema."""


class ResponseStatusError(ConformanceError):
    """Raised when an HTTP response has a non-2xx status."""

    def __init__(self, request_description: str, status_code: int, body: str) -> None:
        self.description = request_description
        self.details = body
        self.status_code = status_code
        self.body = body
        OIDCTesterError.__init__(self, f"{request_description} failed with {status_code}:\n{body}")


class JWTVerificationError(OIDCTesterError):
    """Raised when an ID token fails signature, key or claim verification."""


class FlowOrderError(OIDCTesterError):
    """Raised when a flow stage is started before its prerequisites are loaded."""


class MissingVerifierError(OIDCTesterError):
    """Raised when the callback runs without a stored PKCE code verifier.

    This is a usage error: the flow was not initiated in the same session,
    or the callback was reached by out-of-band navigation.
    """


class TokenRequestError(OIDCTesterError):
    """Raised by the mock provider when a code cannot be redeemed."""


class UnknownCodeError(TokenRequestError):
    """Raised when the authorization code is missing, unknown or expired."""


class PKCEMismatchError(TokenRequestError):
    """Raised when the code verifier does not hash to the stored challenge."""


class CodeSpaceExhaustedError(OIDCTesterError):
    """Raised when no unused authorization code could be generated."""
