"""Tests for the conformance check log and its primitives."""

import asyncio

import httpx
import pytest
from pydantic import BaseModel

from oidctester.core.checks import (
    Check,
    CheckLog,
    Failure,
    Success,
    assert_ok,
    evaluate_schema,
)
from oidctester.core.exceptions import ResponseStatusError, ValidationFailedError


class Document(BaseModel):
    name: str


class TestCheck:
    """Tests for the Check record."""

    def test_to_dict(self) -> None:
        """Test serialization uses the 'pass' key."""
        assert Check("ok", True).to_dict() == {"description": "ok", "pass": True}
        assert Check("bad", False, "why").to_dict() == {"description": "bad", "pass": False, "details": "why"}


class TestOutcome:
    """Tests for Success and Failure."""

    def test_success_unwraps(self) -> None:
        """Test a success returns its value."""
        outcome = Success(42)
        assert outcome.ok
        assert outcome.message is None
        assert outcome.unwrap() == 42

    def test_failure_raises(self) -> None:
        """Test a failure raises its error on unwrap."""
        error = RuntimeError("boom")
        outcome = Failure(error, "boom")
        assert not outcome.ok
        with pytest.raises(RuntimeError) as exc_info:
            outcome.unwrap()
        assert exc_info.value is error

    def test_evaluate_schema(self) -> None:
        """Test schema evaluation produces outcomes without logging."""
        assert evaluate_schema({"name": "x"}, Document, "doc").unwrap() == Document(name="x")

        failure = evaluate_schema({}, Document, "doc")
        assert isinstance(failure, Failure)
        assert isinstance(failure.error, ValidationFailedError)
        assert "name" in failure.message


class TestCheckPrimitive:
    """Tests for CheckLog.check."""

    def test_returns_condition(self) -> None:
        """Test the condition is logged and returned unchanged."""
        log = CheckLog()
        assert log.check(True, "first") is True
        assert log.check(False, "second", "details") is False

        assert [c.description for c in log] == ["first", "second"]
        assert log.checks[1] == Check("second", False, "details")

    def test_summary(self) -> None:
        """Test pass/fail counts."""
        log = CheckLog()
        log.check(True, "a")
        log.check(False, "b")
        log.check(True, "c")

        assert log.summary() == {"total": 3, "passed": 2, "failed": 1}
        assert not log.all_passed
        assert [c.description for c in log.failures] == ["b"]

    def test_logs_to_python_logging(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test checks are emitted as PASS/FAIL log lines."""
        log = CheckLog()
        with caplog.at_level("INFO", logger="oidctester.checks"):
            log.check(True, "good thing")
            log.check(False, "bad thing", "because")
        assert "PASS good thing" in caplog.text
        assert "FAIL bad thing" in caplog.text


class TestValidate:
    """Tests for CheckLog.validate."""

    def test_valid_document(self) -> None:
        """Test a valid document is parsed and logged as passing."""
        log = CheckLog()
        doc = log.validate({"name": "x"}, Document, "Document is valid")

        assert doc == Document(name="x")
        assert log.checks == (Check("Document is valid", True),)

    def test_invalid_document(self) -> None:
        """Test a violation raises after the failed check is logged."""
        log = CheckLog()
        with pytest.raises(ValidationFailedError) as exc_info:
            log.validate({"name": 1}, Document, "Document is valid")

        assert str(exc_info.value).startswith("FAILED: Document is valid\n")
        check = log.checks[0]
        assert check.passed is False
        assert check.details is not None and "name" in check.details


class TestAttempt:
    """Tests for CheckLog.attempt."""

    def test_success(self) -> None:
        """Test the result is returned unchanged and logged as passing."""
        log = CheckLog()
        assert log.attempt(lambda: {"a": 1}, "op works") == {"a": 1}
        assert log.checks == (Check("op works", True),)

    def test_failure_reraises_same_error(self) -> None:
        """Test errors are annotated, never swallowed."""
        log = CheckLog()
        error = ValueError("bad value")

        def operation() -> None:
            raise error

        with pytest.raises(ValueError) as exc_info:
            log.attempt(operation, "op works")

        assert exc_info.value is error
        assert log.checks == (Check("op works", False, "bad value"),)

    def test_details_extractor(self) -> None:
        """Test a custom extractor supplies the check details."""
        log = CheckLog()
        with pytest.raises(KeyError):
            log.attempt(lambda: {}["missing"], "lookup", details=lambda e: f"custom: {type(e).__name__}")
        assert log.checks[0].details == "custom: KeyError"

    def test_error_without_message(self) -> None:
        """Test an error with an empty message yields no details."""
        log = CheckLog()

        def operation() -> None:
            raise RuntimeError()

        with pytest.raises(RuntimeError):
            log.attempt(operation, "op")
        assert log.checks[0].details is None

    def test_async_success(self) -> None:
        """Test awaitable results are awaited before logging."""
        log = CheckLog()

        async def operation() -> str:
            await asyncio.sleep(0)
            return "done"

        assert asyncio.run(log.attempt(operation, "async op")) == "done"
        assert log.checks == (Check("async op", True),)

    def test_async_failure(self) -> None:
        """Test rejected awaitables are logged and re-raised."""
        log = CheckLog()

        async def operation() -> str:
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            asyncio.run(log.attempt(operation, "async op"))
        assert log.checks == (Check("async op", False, "refused"),)

    def test_nothing_logged_until_awaited(self) -> None:
        """Test the check for an awaitable is logged once it settles."""
        log = CheckLog()

        async def operation() -> int:
            return 1

        pending = log.attempt(operation, "async op")
        assert len(log) == 0
        asyncio.run(pending)
        assert len(log) == 1


class TestAssertOk:
    """Tests for assert_ok."""

    def test_success_passthrough(self) -> None:
        """Test 2xx responses are returned."""
        response = httpx.Response(200, json={})
        assert assert_ok(response, "Fetching") is response

    def test_error_status(self) -> None:
        """Test non-2xx responses raise with status and body."""
        response = httpx.Response(503, text="down for maintenance")
        with pytest.raises(ResponseStatusError) as exc_info:
            assert_ok(response, "Fetching config")

        error = exc_info.value
        assert error.status_code == 503
        assert str(error) == "Fetching config failed with 503:\ndown for maintenance"
