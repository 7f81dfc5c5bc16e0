"""Authorization Code + PKCE flow orchestration.

The flow moves three independent stages (config, jwks, token) through
``unstarted -> loading -> loaded | error``:

1. Fetch and validate the discovery document (config stage)
2. On success, fetch and validate the JWKS (jwks stage)
3. Build the authorization request, storing the PKCE verifier first
4. Handle the callback carrying the authorization code
5. Exchange the code for an ID token (token stage)
6. Verify the ID token against the JWKS and issuer

Only a stage runner turns a propagated failure into an ``error`` status; the
failure has already been logged as a check by then. Earlier stages keep their
values when a later stage fails.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, Protocol, TypeVar
from urllib.parse import parse_qs, urljoin, urlsplit

import httpx

from oidctester.core.checks import CheckLog
from oidctester.core.config import ClientSettings
from oidctester.core.crypto.tokens import VerifiedToken
from oidctester.core.exceptions import FlowOrderError, JWTVerificationError, MissingVerifierError
from oidctester.core.logging import LoggingClient, ProtocolLog, ProtocolLogger, get_protocol_logger
from oidctester.core.oidc.client import build_authorization_url, get_token, verify_id_token
from oidctester.core.oidc.discovery import fetch_config, fetch_jwks
from oidctester.core.oidc.models import JSONWebKeySet, OIDCConfig
from oidctester.core.pkce import PKCEPair

logger = logging.getLogger("oidctester.flow")

T = TypeVar("T")

FLOW_TYPE = "oidc_authorization_code_pkce"

CODE_RETURNED = "Auth server passes valid code back to application in URL params"

# Authorization codes must be non-empty printable ASCII
PRINTABLE_ASCII = re.compile(r"[ -~]+")


class StageStatus(StrEnum):
    """Status of a single flow stage."""

    UNSTARTED = "unstarted"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


@dataclass
class Stage(Generic[T]):
    """Status and value of one stage."""

    status: StageStatus = StageStatus.UNSTARTED
    value: T | None = None
    error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.status == StageStatus.LOADED

    def begin(self) -> None:
        self.status = StageStatus.LOADING
        self.value = None
        self.error = None

    def succeed(self, value: T) -> None:
        self.status = StageStatus.LOADED
        self.value = value

    def fail(self, error: BaseException) -> None:
        self.status = StageStatus.ERROR
        self.value = None
        self.error = str(error) or type(error).__name__

    def reset(self) -> None:
        self.status = StageStatus.UNSTARTED
        self.value = None
        self.error = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": str(self.status)}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class FlowState:
    """Per-stage state of an authorization code flow."""

    config: Stage[OIDCConfig] = field(default_factory=Stage)
    jwks: Stage[JSONWebKeySet] = field(default_factory=Stage)
    token: Stage[str] = field(default_factory=Stage)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for the UI layer (token value excluded)."""
        data = {
            "config": self.config.to_dict(),
            "jwks": self.jwks.to_dict(),
            "token": self.token.to_dict(),
        }
        if self.config.value is not None:
            data["config"]["issuer"] = self.config.value.issuer
        return data


class VerifierStore(Protocol):
    """Session-scoped storage for the PKCE code verifier."""

    def save(self, verifier: str) -> None: ...

    def load(self) -> str | None: ...

    def clear(self) -> None: ...


class MemoryVerifierStore:
    """Verifier store holding one verifier in memory, scoped to its flow."""

    def __init__(self) -> None:
        self._verifier: str | None = None

    def __repr__(self) -> str:
        stored = "set" if self._verifier else "empty"
        return f"MemoryVerifierStore({stored})"

    def save(self, verifier: str) -> None:
        self._verifier = verifier

    def load(self) -> str | None:
        return self._verifier

    def clear(self) -> None:
        self._verifier = None


class AuthorizationCodeFlow:
    """Drives a provider through the Authorization Code flow with PKCE."""

    def __init__(
        self,
        settings: ClientSettings,
        checks: CheckLog | None = None,
        verifier_store: VerifierStore | None = None,
        transport: httpx.BaseTransport | None = None,
        protocol_logger: ProtocolLogger | None = None,
        flow_id: str | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            settings: Relying-party settings for the provider under test.
            checks: Check log to record into (a new one if omitted).
            verifier_store: Storage for the PKCE verifier (in-memory if omitted).
            transport: Optional httpx transport (e.g. a WSGI or mock transport).
            protocol_logger: Logger for HTTP exchanges. Defaults to a logger
                with the global logger's level, so concurrent flows keep
                separate exchange logs.
            flow_id: Identifier for logs (generated if omitted).
        """
        self.settings = settings
        self.checks = checks if checks is not None else CheckLog()
        self.verifier_store: VerifierStore = verifier_store if verifier_store is not None else MemoryVerifierStore()
        self.flow_id = flow_id or f"oidc_flow_{secrets.token_hex(16)}"
        self.state = FlowState()

        if protocol_logger is None:
            base = get_protocol_logger()
            protocol_logger = ProtocolLogger(level=base.level, trace_enabled=base.trace_enabled)
        self.protocol_logger = protocol_logger
        self.protocol_log: ProtocolLog = protocol_logger.start_flow(self.flow_id, FLOW_TYPE)

        self.http = LoggingClient(
            protocol_logger=protocol_logger,
            transport=transport,
            timeout=settings.timeout,
            verify=settings.verify_tls,
        )
        self._verified: VerifiedToken | None = None

    def __enter__(self) -> AuthorizationCodeFlow:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client and complete the protocol log."""
        self.http.close()
        if self.protocol_logger.current_log is self.protocol_log:
            self.protocol_logger.end_flow()

    @property
    def can_log_in(self) -> bool:
        return self.state.config.loaded

    @property
    def can_verify(self) -> bool:
        return self.state.config.loaded and self.state.jwks.loaded and self.state.token.loaded

    def _run_stage(self, name: str, stage: Stage[T], operation: Callable[[], T]) -> bool:
        stage.begin()
        logger.debug(f"[{self.flow_id}] {name} stage loading")
        try:
            value = operation()
        except Exception as e:
            stage.fail(e)
            logger.warning(f"[{self.flow_id}] {name} stage failed: {stage.error}")
            return False
        stage.succeed(value)
        logger.info(f"[{self.flow_id}] {name} stage loaded")
        return True

    def start(self) -> FlowState:
        """Load the configuration and, once it is loaded, the JWKS."""
        if self.load_config():
            self.load_jwks()
        return self.state

    def load_config(self) -> bool:
        """Run the config stage. Returns True if the config loaded."""
        return self._run_stage(
            "config",
            self.state.config,
            lambda: fetch_config(self.http, self.checks, self.settings.oidc_server),
        )

    def load_jwks(self) -> bool:
        """Run the jwks stage. Returns True if the JWKS loaded.

        Raises:
            FlowOrderError: If the config stage has not loaded.
        """
        config = self._require_config("JWKS")
        return self._run_stage("jwks", self.state.jwks, lambda: fetch_jwks(self.http, self.checks, config))

    def _require_config(self, action: str) -> OIDCConfig:
        config = self.state.config.value
        if not self.state.config.loaded or config is None:
            raise FlowOrderError(f"{action} requires a loaded OpenID Connect configuration")
        return config

    def authorize(self, state: str | None = None) -> str:
        """Create the authorization request URL.

        A new PKCE pair is generated and its verifier stored before the URL is
        returned, so the caller may navigate away immediately.

        Raises:
            FlowOrderError: If the config stage has not loaded.
        """
        config = self._require_config("Logging in")
        pkce = PKCEPair.generate()
        self.verifier_store.save(pkce.verifier)
        logger.info(f"[{self.flow_id}] Redirecting to {config.authorization_endpoint}")
        return build_authorization_url(config, self.settings, pkce.challenge, state=state)

    def handle_callback(self, code: str | None) -> FlowState:
        """Handle the authorization callback carrying a code.

        Raises:
            MissingVerifierError: If no verifier was stored for this flow.
        """
        valid = code is not None and PRINTABLE_ASCII.fullmatch(code) is not None
        self.checks.check(valid, CODE_RETURNED, None if valid else f"Received code: {code!r}")

        verifier = self.verifier_store.load()
        if verifier is None:
            raise MissingVerifierError(
                "No PKCE code verifier stored for this flow; start the login from this session"
            )

        if code and self.state.config.loaded:
            self.exchange_code(code, verifier)
        return self.state

    def exchange_code(self, code: str, code_verifier: str) -> bool:
        """Run the token stage. Returns True if a token was obtained.

        Raises:
            FlowOrderError: If the config stage has not loaded.
        """
        config = self._require_config("Code exchange")
        self._verified = None
        loaded = self._run_stage(
            "token",
            self.state.token,
            lambda: get_token(self.http, self.checks, config, self.settings, code, code_verifier),
        )
        if loaded:
            self.verifier_store.clear()
        return loaded

    def verify(self) -> VerifiedToken | None:
        """Verify the ID token once config, JWKS and token are loaded.

        Returns:
            The verified token, or None if it cannot be verified yet or failed
            verification (the failure is logged as a check).
        """
        config = self.state.config.value
        jwks = self.state.jwks.value
        token = self.state.token.value
        if not self.can_verify or config is None or jwks is None or token is None:
            return None
        if self._verified is not None:
            return self._verified

        try:
            self._verified = verify_id_token(self.checks, token, jwks, issuer=config.issuer)
        except JWTVerificationError as e:
            logger.warning(f"[{self.flow_id}] ID token verification failed: {e}")
            return None
        return self._verified

    def logout(self) -> FlowState:
        """Discard the token; config and JWKS are kept."""
        self.state.token.reset()
        self._verified = None
        logger.info(f"[{self.flow_id}] Logged out")
        return self.state

    def to_dict(self) -> dict[str, Any]:
        """Flow state and checks for display."""
        return {
            "flow_id": self.flow_id,
            "state": self.state.to_dict(),
            "checks": self.checks.to_list(),
            "summary": self.checks.summary(),
        }


def _matches_redirect_uri(url: str, redirect_uri: str) -> bool:
    target, expected = urlsplit(url), urlsplit(redirect_uri)
    return (target.scheme, target.netloc, target.path) == (expected.scheme, expected.netloc, expected.path)


def code_from_callback_url(url: str) -> str | None:
    """Extract the ``code`` query parameter from a callback URL."""
    values = parse_qs(urlsplit(url).query, keep_blank_values=True).get("code")
    return values[0] if values else None


def run_headless(
    flow: AuthorizationCodeFlow,
    prompt_callback: Callable[[str], str | None] | None = None,
) -> VerifiedToken | None:
    """Run the whole flow without a browser.

    The authorization URL is requested without following redirects. If the
    provider redirects straight back to the redirect URI (as the mock IdP
    does), the code is read from the ``Location`` header. Otherwise
    ``prompt_callback`` is given the authorization URL and should return the
    callback URL the browser landed on.

    Returns:
        The verified ID token, or None if any stage failed.
    """
    flow.start()
    if not flow.can_log_in:
        return None

    authorization_url = flow.authorize()
    callback_url: str | None = None
    try:
        response = flow.http.get(authorization_url)
    except httpx.HTTPError as e:
        logger.warning(f"[{flow.flow_id}] Authorization request failed: {e}")
    else:
        location = response.headers.get("location") if response.is_redirect else None
        if location:
            location = urljoin(str(response.request.url), location)
            if _matches_redirect_uri(location, flow.settings.redirect_uri):
                callback_url = location

    if callback_url is None and prompt_callback is not None:
        callback_url = prompt_callback(authorization_url)

    code = code_from_callback_url(callback_url) if callback_url else None
    flow.handle_callback(code)
    return flow.verify()
