"""Protocol logging for the conformance engine and the mock IdP.

Records every HTTP exchange the relying-party side makes while driving a
provider, so a failed check can be read next to the traffic that caused it.
Authorization codes, PKCE verifiers, tokens and client secrets are redacted
unless TRACE output has been explicitly enabled.

Log levels:
- ERROR: Only log errors
- INFO: One line per exchange (method, URL, status, duration)
- DEBUG: Adds headers and the redirect target
- TRACE: Adds request/response bodies (sensitive data requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger("oidctester.protocol")

REDACTED = "[REDACTED]"

# Bodies longer than this are truncated in formatted output
MAX_BODY_CHARS = 2000


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR
    INFO = logging.INFO
    DEBUG = logging.DEBUG
    TRACE = TRACE


# Parameters whose values are secrets in query strings, form bodies and JSON
SENSITIVE_FIELDS = (
    "code",
    "code_verifier",
    "client_secret",
    "id_token",
    "access_token",
    "refresh_token",
)

_FORM_PATTERNS = [
    (re.compile(rf"(?<![A-Za-z0-9_])({name}=)[^&\s]+", re.IGNORECASE), rf"\1{REDACTED}")
    for name in SENSITIVE_FIELDS
]
_JSON_PATTERNS = [
    (re.compile(rf'"({name})"\s*:\s*"[^"]+"', re.IGNORECASE), rf'"\1": "{REDACTED}"')
    for name in SENSITIVE_FIELDS
]
_CREDENTIAL_PATTERNS = [
    (re.compile(r"(Authorization:\s*(?:Bearer|Basic)\s+)\S+", re.IGNORECASE), rf"\1{REDACTED}"),
    (re.compile(r"^((?:Bearer|Basic)\s+)\S+", re.IGNORECASE), rf"\1{REDACTED}"),
    (re.compile(r"((?:Set-)?Cookie:\s*)[^\r\n]+", re.IGNORECASE), rf"\1{REDACTED}"),
]

SENSITIVE_PATTERNS = _FORM_PATTERNS + _JSON_PATTERNS + _CREDENTIAL_PATTERNS

# Header values redacted wholesale
SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: URL, body or header text that may contain secrets.

    Returns:
        Text with sensitive values replaced by ``[REDACTED]``.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Redact credential-bearing headers."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_HEADERS else redact_sensitive(value)
        for name, value in headers.items()
    }


def _truncate(body: str) -> str:
    if len(body) > MAX_BODY_CHARS:
        return f"{body[:MAX_BODY_CHARS]}..."
    return body


@dataclass
class HTTPExchange:
    """A single HTTP request/response exchange."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    @property
    def location(self) -> str | None:
        """Redirect target, if the response was a redirect."""
        if self.response_status is not None and 300 <= self.response_status < 400:
            return self.response_headers.get("location")
        return None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If False, sensitive values are redacted.
        """

        def text(value: str | None) -> str | None:
            if value is None or include_sensitive:
                return value
            return redact_sensitive(value)

        def headers(values: dict[str, str]) -> dict[str, str]:
            return dict(values) if include_sensitive else redact_headers(values)

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": text(self.url),
            "request_headers": headers(self.request_headers),
            "request_body": text(self.request_body),
            "response_status": self.response_status,
            "response_headers": headers(self.response_headers),
            "response_body": text(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Detail level; lower levels include more.
            include_sensitive: If True, secrets are not redacted.

        Returns:
            Multi-line log text.
        """
        data = self.to_dict(include_sensitive)
        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {data['url']} -> {status}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            lines.extend(f"    {k}: {v}" for k, v in data["request_headers"].items())
            if self.response_headers:
                lines.append("  Response Headers:")
                lines.extend(f"    {k}: {v}" for k, v in data["response_headers"].items())
            if self.location:
                location = self.location if include_sensitive else redact_sensitive(self.location)
                lines.append(f"  Redirect: {location}")

        if level <= LogLevel.TRACE:
            if data["request_body"]:
                lines.append("  Request Body:")
                lines.append(f"    {_truncate(data['request_body'])}")
            if data["response_body"]:
                lines.append("  Response Body:")
                lines.append(f"    {_truncate(data['response_body'])}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Exchanges collected for one flow."""

    flow_id: str
    flow_type: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        self.exchanges.append(exchange)

    def complete(self) -> None:
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "flow_type": self.flow_type,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Collects HTTP exchanges into per-flow logs and emits them to ``logging``.

    One flow log is active at a time. Exchanges made while no flow is active
    are still emitted but not collected.
    """

    def __init__(self, level: LogLevel = LogLevel.INFO, trace_enabled: bool = False) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE output (with sensitive data) is allowed.
        """
        self.level = level
        self.trace_enabled = trace_enabled
        self._current_log: ProtocolLog | None = None
        self._exchange_counter = 0

    @property
    def current_log(self) -> ProtocolLog | None:
        return self._current_log

    @property
    def effective_level(self) -> LogLevel:
        """Log level in effect; TRACE degrades to DEBUG unless enabled."""
        if self.level == LogLevel.TRACE and not self.trace_enabled:
            return LogLevel.DEBUG
        return self.level

    @property
    def include_sensitive(self) -> bool:
        return self.trace_enabled and self.level <= LogLevel.TRACE

    def next_exchange_id(self) -> str:
        self._exchange_counter += 1
        return f"http_{self._exchange_counter:04d}"

    def start_flow(self, flow_id: str, flow_type: str) -> ProtocolLog:
        """Start collecting exchanges for a new flow."""
        self._current_log = ProtocolLog(flow_id=flow_id, flow_type=flow_type)
        logger.info(f"Started protocol logging for {flow_type} flow: {flow_id}")
        return self._current_log

    def end_flow(self) -> ProtocolLog | None:
        """Complete the active flow log and return it."""
        log = self._current_log
        if log is None:
            return None
        log.complete()
        self._current_log = None
        logger.info(
            f"Completed protocol logging for {log.flow_type} flow: {log.flow_id} "
            f"({len(log.exchanges)} exchanges)"
        )
        return log

    def log_exchange(self, exchange: HTTPExchange) -> None:
        """Record an exchange in the active flow and emit it."""
        if self._current_log is not None:
            self._current_log.add_exchange(exchange)

        if exchange.error:
            url = exchange.url if self.include_sensitive else redact_sensitive(exchange.url)
            logger.error(f"HTTP error: {exchange.method} {url}: {exchange.error}")
            return

        effective = self.effective_level
        if effective > LogLevel.INFO:
            return
        text = exchange.format_log(effective, self.include_sensitive)
        logger.log(logging.DEBUG if effective <= LogLevel.DEBUG else logging.INFO, text)


def _request_body(request: httpx.Request) -> str | None:
    try:
        content = request.content
    except httpx.RequestNotRead:
        return "<streaming content>"
    if not content:
        return None
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary content>"


class LoggingClient(httpx.Client):
    """HTTPX client that records each request/response with a ProtocolLogger.

    Redirects are not followed by default: the conformance engine needs to see
    the authorization endpoint's redirect and read the code from it.
    """

    def __init__(self, protocol_logger: ProtocolLogger | None = None, **kwargs: Any) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to record into (global one if omitted).
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        kwargs.setdefault("follow_redirects", False)
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        return self._protocol_logger

    def send(self, request: httpx.Request, **kwargs: Any) -> httpx.Response:
        """Send a request, recording the exchange (including failures)."""
        exchange = HTTPExchange(
            id=self._protocol_logger.next_exchange_id(),
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=_request_body(request),
        )
        start_time = time.perf_counter()
        try:
            response = super().send(request, **kwargs)
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e) or type(e).__name__
            self._protocol_logger.log_exchange(exchange)
            raise

        if not kwargs.get("stream"):
            response.read()
            exchange.response_body = response.text
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        self._protocol_logger.log_exchange(exchange)
        return response


_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Replace the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


_LEVEL_NAMES = {
    "ERROR": LogLevel.ERROR,
    "WARNING": LogLevel.ERROR,
    "INFO": LogLevel.INFO,
    "DEBUG": LogLevel.DEBUG,
    "TRACE": LogLevel.TRACE,
}


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure logging for the ``oidctester`` logger hierarchy.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or its name.
        trace_enabled: Whether TRACE may include sensitive data.
        log_file: Optional file path to also write logs to.

    Returns:
        The newly installed global ProtocolLogger.
    """
    if isinstance(level, str):
        level = _LEVEL_NAMES.get(level.upper(), LogLevel.INFO)

    root = logging.getLogger("oidctester")
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        logger.warning("TRACE logging enabled - codes, verifiers and tokens will be logged!")

    return protocol_logger
