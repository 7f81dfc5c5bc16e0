"""Browser-driven conformance tester endpoints.

Each browser session is mapped to one server-side AuthorizationCodeFlow via a
flow id held in the Flask session. The PKCE verifier lives in that flow, so it
never leaves the server and is scoped to the session that started the login.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from flask import Blueprint, current_app, jsonify, redirect, request, session, url_for

from oidctester.core.exceptions import FlowOrderError, MissingVerifierError
from oidctester.core.oidc.flows import CODE_RETURNED, AuthorizationCodeFlow, StageStatus

if TYPE_CHECKING:
    import httpx
    from werkzeug.wrappers import Response as WerkzeugResponse

    from oidctester.core.config import ClientSettings

logger = logging.getLogger("oidctester.flow")

tester_bp = Blueprint("tester", __name__, url_prefix="/tester")

# Session key for the flow id
FLOW_ID_KEY = "tester_flow_id"

REGISTRY_EXTENSION = "oidctester.flows"
SETTINGS_EXTENSION = "oidctester.client_settings"
TRANSPORT_EXTENSION = "oidctester.transport"

DEFAULT_MAX_FLOWS = 100
DEFAULT_IDLE_TIMEOUT_SECONDS = 1800.0


class FlowRegistry:
    """Server-side flows keyed by flow id.

    Flows idle longer than ``idle_timeout`` are closed, and the least recently
    used flows are closed once more than ``max_flows`` are registered.
    """

    def __init__(
        self,
        max_flows: int = DEFAULT_MAX_FLOWS,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_flows < 1:
            raise ValueError("max_flows must be at least 1")
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self.max_flows = max_flows
        self.idle_timeout = idle_timeout
        self._clock = clock
        # Ordered oldest use first
        self._flows: OrderedDict[str, tuple[AuthorizationCodeFlow, float]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._flows)

    def _evict(self) -> list[AuthorizationCodeFlow]:
        # Caller holds the lock
        evicted = []
        cutoff = self._clock() - self.idle_timeout
        while self._flows:
            flow_id, (flow, last_used) = next(iter(self._flows.items()))
            if last_used > cutoff and len(self._flows) <= self.max_flows:
                break
            del self._flows[flow_id]
            evicted.append(flow)
        return evicted

    def _close(self, flows: list[AuthorizationCodeFlow]) -> None:
        for flow in flows:
            logger.info(f"Evicting tester flow {flow.flow_id}")
            flow.close()

    def get(self, flow_id: str | None) -> AuthorizationCodeFlow | None:
        if not flow_id:
            return None
        with self._lock:
            evicted = self._evict()
            entry = self._flows.get(flow_id)
            if entry is not None:
                self._flows[flow_id] = (entry[0], self._clock())
                self._flows.move_to_end(flow_id)
        self._close(evicted)
        return entry[0] if entry is not None else None

    def add(self, flow: AuthorizationCodeFlow) -> None:
        with self._lock:
            self._flows[flow.flow_id] = (flow, self._clock())
            self._flows.move_to_end(flow.flow_id)
            evicted = self._evict()
        self._close(evicted)

    def discard(self, flow_id: str) -> None:
        with self._lock:
            entry = self._flows.pop(flow_id, None)
        if entry is not None:
            entry[0].close()

    def close(self) -> None:
        """Close every flow."""
        with self._lock:
            flows = [flow for flow, _ in self._flows.values()]
            self._flows.clear()
        for flow in flows:
            flow.close()


def get_registry() -> FlowRegistry:
    return current_app.extensions[REGISTRY_EXTENSION]


def _new_flow() -> AuthorizationCodeFlow:
    settings: ClientSettings = current_app.extensions[SETTINGS_EXTENSION]
    transport: httpx.BaseTransport | None = current_app.extensions.get(TRANSPORT_EXTENSION)
    flow = AuthorizationCodeFlow(
        settings,
        transport=transport,
        flow_id=f"tester_{secrets.token_hex(16)}",
    )
    get_registry().add(flow)
    session[FLOW_ID_KEY] = flow.flow_id
    return flow


def current_flow() -> AuthorizationCodeFlow | None:
    """Get the flow for this browser session."""
    return get_registry().get(session.get(FLOW_ID_KEY))


def _error(message: str, status: int, flow: AuthorizationCodeFlow | None = None) -> tuple[Any, int]:
    body: dict[str, Any] = {"error": message}
    if flow is not None:
        body.update(flow.to_dict())
    return jsonify(body), status


@tester_bp.route("/")
def index() -> Any:
    """Flow state and checks. Discovery runs on the first visit."""
    flow = current_flow()
    if flow is not None and request.args.get("restart") is not None:
        get_registry().discard(flow.flow_id)
        flow = None
    if flow is None:
        flow = _new_flow()
    if flow.state.config.status == StageStatus.UNSTARTED:
        flow.start()
    return jsonify(flow.to_dict())


@tester_bp.route("/login")
def login() -> WerkzeugResponse | tuple[Any, int]:
    """Redirect the browser to the provider's authorization endpoint."""
    flow = current_flow()
    if flow is None:
        return _error("No flow in progress; load the tester first", 409)
    try:
        authorization_url = flow.authorize()
    except FlowOrderError as e:
        return _error(str(e), 409, flow)
    return redirect(authorization_url)


@tester_bp.route("/callback")
def callback() -> WerkzeugResponse | tuple[Any, int]:
    """Receive the authorization code and exchange it for a token."""
    flow = current_flow()
    if flow is None:
        return _error("No flow in progress for this session; the login was not started here", 400)

    if request.args.get("error"):
        description = request.args.get("error_description", "")
        flow.checks.check(False, CODE_RETURNED, description)
        return _error(f"Authorization failed: {request.args['error']}", 400, flow)

    try:
        flow.handle_callback(request.args.get("code"))
    except MissingVerifierError as e:
        return _error(str(e), 400, flow)

    if not flow.state.token.loaded:
        return _error("Code exchange failed", 400, flow)
    return redirect(url_for("tester.index"))


@tester_bp.route("/logout", methods=["POST"])
def logout() -> Any:
    """Discard the token, keeping the loaded configuration."""
    flow = current_flow()
    if flow is None:
        return _error("No flow in progress", 409)
    flow.logout()
    return jsonify(flow.to_dict())


@tester_bp.route("/token")
def token() -> Any:
    """The verified ID token's header and payload."""
    flow = current_flow()
    if flow is None:
        return _error("No flow in progress", 404)
    verified = flow.verify()
    if verified is None:
        return _error("No verified ID token", 404, flow)
    return jsonify(verified.to_dict())
