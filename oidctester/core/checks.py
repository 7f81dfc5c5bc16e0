"""Conformance checks and assertion primitives.

Every protocol expectation the tester evaluates is recorded as a ``Check`` in a
``CheckLog``. Three primitives produce checks:

- ``check``: record a boolean condition and return it.
- ``validate``: validate a document against a pydantic schema, recording the
  result and raising ``ValidationFailedError`` on violation.
- ``attempt``: run an operation (sync or async), recording whether it
  succeeded and re-raising its error unchanged when it did not.

Outcomes are represented explicitly as ``Success``/``Failure`` values, so the
check is recorded at the point an outcome is produced, independently of whether
the caller then propagates or handles it.
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx
from pydantic import TypeAdapter, ValidationError

from oidctester.core.exceptions import ResponseStatusError, ValidationFailedError

logger = logging.getLogger("oidctester.checks")

T = TypeVar("T")

DetailsExtractor = Callable[[BaseException], str]


@dataclass(frozen=True)
class Check:
    """Result of a single conformance check."""

    description: str
    passed: bool
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {"description": self.description, "pass": self.passed}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class Success(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    @property
    def ok(self) -> bool:
        return True

    @property
    def message(self) -> str | None:
        return None

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Failure:
    """Failed outcome carrying the error and a human-readable message."""

    error: BaseException
    message: str | None = None

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> Any:
        raise self.error


Outcome = Success[T] | Failure


def format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic ValidationError into a one-line-per-violation message."""
    lines = []
    for err in error.errors():
        location = ".".join(str(part) for part in err["loc"]) or "(root)"
        lines.append(f"{location}: {err['msg']}")
    return "\n".join(lines)


def evaluate_schema(value: Any, schema: type[T], description: str) -> Outcome[T]:
    """Validate a value against a schema without recording a check.

    Returns:
        Success with the parsed value, or Failure with a ValidationFailedError.
    """
    try:
        parsed = TypeAdapter(schema).validate_python(value)
    except ValidationError as e:
        details = format_validation_error(e)
        return Failure(ValidationFailedError(description, details), details)
    return Success(parsed)


def _error_details(error: BaseException, extractor: DetailsExtractor | None) -> str | None:
    if extractor is not None:
        return extractor(error)
    message = str(error)
    return message or None


def assert_ok(response: httpx.Response, request_description: str) -> httpx.Response:
    """Raise ResponseStatusError unless the response has a 2xx status.

    This does not record a check; callers wrap it in ``attempt``.
    """
    if response.is_success:
        return response
    raise ResponseStatusError(request_description, response.status_code, response.text)


class CheckLog:
    """Append-only, insertion-ordered log of conformance checks."""

    def __init__(self) -> None:
        self._checks: list[Check] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._checks)

    def __iter__(self) -> Iterator[Check]:
        return iter(self.checks)

    @property
    def checks(self) -> tuple[Check, ...]:
        """Snapshot of all logged checks in insertion order."""
        with self._lock:
            return tuple(self._checks)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def failures(self) -> list[Check]:
        return [c for c in self.checks if not c.passed]

    def log(self, check: Check) -> Check:
        """Append a check to the log."""
        with self._lock:
            self._checks.append(check)

        if check.passed:
            logger.info(f"PASS {check.description}")
        else:
            suffix = f"\n  {check.details}" if check.details is not None else ""
            logger.warning(f"FAIL {check.description}{suffix}")
        return check

    def check(self, condition: bool, description: str, details: str | None = None) -> bool:
        """Log the result of a conformance check, returning the condition unchanged."""
        self.log(Check(description=description, passed=bool(condition), details=details))
        return condition

    def record(self, outcome: Outcome[Any], description: str) -> Outcome[Any]:
        """Log a check for an outcome and return the outcome."""
        self.log(Check(description=description, passed=outcome.ok, details=outcome.message))
        return outcome

    def validate(self, value: Any, schema: type[T], description: str) -> T:
        """Validate a value against a schema, logging a check either way.

        Args:
            value: Decoded JSON document (or any value) to validate.
            schema: Pydantic model or type understood by ``TypeAdapter``.
            description: Check description.

        Returns:
            The parsed value.

        Raises:
            ValidationFailedError: If the value violates the schema.
        """
        outcome = evaluate_schema(value, schema, description)
        self.record(outcome, description)
        return outcome.unwrap()

    def attempt(
        self,
        operation: Callable[[], Any],
        description: str,
        details: DetailsExtractor | None = None,
    ) -> Any:
        """Run an operation, logging whether it succeeded.

        If the operation returns an awaitable, a coroutine is returned that
        logs the check once the awaitable settles. Errors are never swallowed:
        the original exception is re-raised after the failed check is logged.

        Args:
            operation: Zero-argument callable to run.
            description: Check description.
            details: Optional function deriving check details from an error.

        Returns:
            The operation's result (or a coroutine resolving to it).
        """
        try:
            result = operation()
        except Exception as e:
            self.record(Failure(e, _error_details(e, details)), description)
            raise

        if inspect.isawaitable(result):
            return self._attempt_awaitable(result, description, details)

        self.record(Success(result), description)
        return result

    async def _attempt_awaitable(
        self,
        awaitable: Awaitable[T],
        description: str,
        details: DetailsExtractor | None,
    ) -> T:
        try:
            value = await awaitable
        except Exception as e:
            self.record(Failure(e, _error_details(e, details)), description)
            raise
        self.record(Success(value), description)
        return value

    def to_list(self) -> list[dict[str, Any]]:
        """Convert all checks to dictionaries."""
        return [c.to_dict() for c in self.checks]

    def summary(self) -> dict[str, int]:
        """Count passed and failed checks."""
        checks = self.checks
        passed = sum(1 for c in checks if c.passed)
        return {"total": len(checks), "passed": passed, "failed": len(checks) - passed}
