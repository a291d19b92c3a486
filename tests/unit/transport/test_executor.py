"""Unit tests for RequestExecutor retry, backoff and failure classification."""

import logging
from datetime import UTC, datetime, timedelta
from email.utils import format_datetime

import httpx
import pytest

from plannerbridge.exceptions import (
    ConcurrencyConflictError,
    GraphRequestError,
    GraphValidationError,
    PermanentClientError,
    RateLimitError,
    RetryExhaustedError,
    TransientNetworkError,
)
from plannerbridge.transport.executor import (
    ApiOperation,
    FailureKind,
    classify_failure,
    parse_retry_after,
)
from plannerbridge.transport.throttle import RequestThrottle

CREATE_PLAN = ApiOperation("POST", "/planner/plans", {"owner": "group-1", "title": "Roadmap"})


class ScriptedHandler:
    """Transport handler answering requests from a fixed list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def ok(body=None, status=200) -> httpx.Response:
    return httpx.Response(status, json=body if body is not None else {"id": "plan-1"})


class TestClassifyFailure:
    """Tests for classify_failure."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (RateLimitError("slow down"), FailureKind.RATE_LIMITED),
            (TransientNetworkError("bad gateway", status_code=502), FailureKind.TRANSIENT),
            (PermanentClientError("not found", status_code=404), FailureKind.PERMANENT),
            (ConcurrencyConflictError("stale", status_code=412), FailureKind.PERMANENT),
            (GraphRequestError("no status"), FailureKind.TRANSIENT),
            (GraphRequestError("timeout", status_code=408), FailureKind.TRANSIENT),
            (GraphRequestError("unavailable", status_code=503), FailureKind.TRANSIENT),
            (GraphRequestError("throttled", status_code=429), FailureKind.RATE_LIMITED),
            (GraphRequestError("forbidden", status_code=403), FailureKind.PERMANENT),
            (ConnectionResetError("reset by peer"), FailureKind.TRANSIENT),
        ],
    )
    def test_classification(self, error, expected):
        """Test each failure shape maps to the expected kind."""
        assert classify_failure(error) is expected


class TestParseRetryAfter:
    """Tests for parse_retry_after."""

    def test_seconds(self):
        assert parse_retry_after("7") == 7.0

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None
        assert parse_retry_after("soon") is None

    def test_http_date_in_future(self):
        when = datetime.now(UTC) + timedelta(seconds=60)
        wait = parse_retry_after(format_datetime(when, usegmt=True))
        assert 55 <= wait <= 60

    def test_http_date_in_past_is_zero(self):
        when = datetime.now(UTC) - timedelta(minutes=5)
        assert parse_retry_after(format_datetime(when, usegmt=True)) == 0.0


class TestApiOperation:
    """Tests for ApiOperation helpers."""

    def test_mutating_methods(self):
        assert CREATE_PLAN.is_mutating
        assert not ApiOperation("GET", "/users/x").is_mutating

    def test_conditional_detects_if_match_any_case(self):
        assert ApiOperation("PATCH", "/x", headers={"if-match": 'W/"1"'}).is_conditional
        assert not ApiOperation("PATCH", "/x").is_conditional

    def test_str(self):
        assert str(ApiOperation("patch", "/planner/tasks/1/details")) == (
            "PATCH /planner/tasks/1/details"
        )


class TestRequestExecutorSuccess:
    """Tests for successful operations."""

    def test_returns_decoded_body(self, make_executor, sleep_recorder):
        """Test a 2xx response body is returned as JSON."""
        handler = ScriptedHandler(ok({"id": "plan-1"}, status=201))
        executor = make_executor(handler)

        assert executor.execute(CREATE_PLAN) == {"id": "plan-1"}
        assert len(handler.requests) == 1
        assert sleep_recorder.calls == []

    def test_empty_body_returns_none(self, make_executor):
        """Test 204 No Content yields None."""
        executor = make_executor(ScriptedHandler(httpx.Response(204)))
        assert executor.execute(ApiOperation("PATCH", "/planner/tasks/1/details", {})) is None

    def test_sends_payload_params_and_headers(self, make_executor):
        """Test the operation is translated into the HTTP request."""
        handler = ScriptedHandler(ok({"value": []}))
        executor = make_executor(handler)

        executor.execute(
            ApiOperation(
                "GET",
                "/users",
                params={"$filter": "mail eq 'a@b.com'"},
                headers={"If-Match": 'W/"1"'},
            )
        )

        request = handler.requests[0]
        assert request.url.path == "/v1.0/users"
        assert request.url.params["$filter"] == "mail eq 'a@b.com'"
        assert request.headers["If-Match"] == 'W/"1"'
        assert request.headers["Authorization"] == "Bearer test-token"

    def test_throttle_applies_to_first_attempt(self, make_executor, sleep_recorder):
        """Test the fixed delay is applied before the very first request."""
        executor = make_executor(ScriptedHandler(ok()), throttle_delay_ms=500)

        executor.execute(CREATE_PLAN)

        assert sleep_recorder.calls == [0.5]
        assert executor.throttle.state.total_requests == 1


class TestRequestExecutorRetries:
    """Tests for transient failures and backoff."""

    def test_transient_failures_below_budget_succeed(self, make_executor, sleep_recorder):
        """Test two 503s followed by success return the success with linear backoff."""
        handler = ScriptedHandler(
            httpx.Response(503), httpx.Response(503), ok({"id": "plan-9"}, status=201)
        )
        executor = make_executor(handler, base_delay_seconds=2.0)

        assert executor.execute(CREATE_PLAN) == {"id": "plan-9"}
        assert len(handler.requests) == 3
        assert sleep_recorder.calls == [2.0, 4.0]
        assert executor.retries == 2

    def test_exhaustion_reports_status_and_attempts(self, make_executor, sleep_recorder):
        """Test three 503s raise RetryExhaustedError carrying the last status."""
        handler = ScriptedHandler(*(httpx.Response(503) for _ in range(3)))
        executor = make_executor(handler, base_delay_seconds=2.0)

        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.execute(CREATE_PLAN)

        assert exc_info.value.status_code == 503
        assert exc_info.value.attempts == 3
        assert "3 attempt(s)" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, TransientNetworkError)
        assert len(handler.requests) == 3
        assert sleep_recorder.calls == [2.0, 4.0]

    def test_network_error_without_status_is_retried(self, make_executor, sleep_recorder):
        """Test a connection failure is treated as transient."""
        handler = ScriptedHandler(
            httpx.ConnectError("connection refused"), ok({"id": "plan-2"}, status=201)
        )
        executor = make_executor(handler, base_delay_seconds=1.5)

        assert executor.execute(CREATE_PLAN) == {"id": "plan-2"}
        assert sleep_recorder.calls == [1.5]

    def test_network_error_exhaustion_has_no_status(self, make_executor):
        """Test exhausted network failures report status None."""
        handler = ScriptedHandler(*(httpx.ReadTimeout("timed out") for _ in range(3)))
        executor = make_executor(handler)

        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.execute(CREATE_PLAN)

        assert exc_info.value.status_code is None
        assert "last status: none" in str(exc_info.value)

    def test_attempt_override(self, make_executor):
        """Test attempts=1 sends exactly one request."""
        handler = ScriptedHandler(httpx.Response(503))
        executor = make_executor(handler)

        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.execute(CREATE_PLAN, attempts=1)

        assert exc_info.value.attempts == 1
        assert len(handler.requests) == 1

    def test_retry_log_uses_effective_attempt_budget(self, make_executor, caplog):
        """Test the retry warning counts against the overridden budget."""
        handler = ScriptedHandler(httpx.Response(503), ok())
        executor = make_executor(handler)

        with caplog.at_level(logging.WARNING, logger="plannerbridge.transport.executor"):
            executor.execute(CREATE_PLAN, attempts=5)

        assert "attempt 1/5 failed (transient)" in caplog.text


class TestRequestExecutorNonGraphErrors:
    """Tests for exceptions outside the Graph error taxonomy."""

    def test_keyboard_interrupt_during_throttle_propagates(self, make_executor):
        """Test Ctrl-C while waiting before a request is never retried."""
        def interrupted_sleep(seconds: float) -> None:
            raise KeyboardInterrupt

        handler = ScriptedHandler(ok())
        executor = make_executor(handler)
        executor.throttle = RequestThrottle(100, sleep=interrupted_sleep)

        with pytest.raises(KeyboardInterrupt):
            executor.execute(CREATE_PLAN)

        assert handler.requests == []
        assert executor.retries == 0

    def test_keyboard_interrupt_during_send_propagates(self, make_executor):
        """Test Ctrl-C while a request is in flight is never retried."""
        handler = ScriptedHandler(KeyboardInterrupt(), ok())
        executor = make_executor(handler)

        with pytest.raises(KeyboardInterrupt):
            executor.execute(CREATE_PLAN)

        assert len(handler.requests) == 1
        assert executor.retries == 0

    def test_unreadable_success_body_is_not_resent(self, make_executor):
        """Test a 201 with a broken body fails permanently instead of re-posting."""
        handler = ScriptedHandler(
            httpx.Response(201, content=b"{not json", headers={"Content-Type": "application/json"}),
            ok(),
        )
        executor = make_executor(handler)

        with pytest.raises(PermanentClientError, match="unreadable body") as exc_info:
            executor.execute(CREATE_PLAN)

        assert exc_info.value.status_code == 201
        assert len(handler.requests) == 1


class TestRequestExecutorRateLimiting:
    """Tests for HTTP 429 handling."""

    def test_waits_retry_after(self, make_executor, sleep_recorder):
        """Test the wait before the next attempt honours Retry-After."""
        handler = ScriptedHandler(
            httpx.Response(429, headers={"Retry-After": "7"}), ok(status=201)
        )
        executor = make_executor(handler, base_delay_seconds=2.0)

        executor.execute(CREATE_PLAN)

        assert sleep_recorder.calls == [7.0]
        assert executor.throttle.state.total_429_count == 1
        assert executor.throttle.state.rate_limit_wait_seconds == 7.0

    def test_missing_retry_after_uses_fallback(self, make_executor, sleep_recorder):
        """Test a 429 without Retry-After waits the configured fallback."""
        handler = ScriptedHandler(httpx.Response(429), ok(status=201))
        executor = make_executor(handler, rate_limit_wait_seconds=30.0)

        executor.execute(CREATE_PLAN)

        assert sleep_recorder.calls == [30.0]

    def test_rate_limits_count_toward_budget(self, make_executor):
        """Test repeated 429s exhaust the shared retry budget."""
        handler = ScriptedHandler(
            *(httpx.Response(429, headers={"Retry-After": "1"}) for _ in range(3))
        )
        executor = make_executor(handler, max_retries=3)

        with pytest.raises(RetryExhaustedError) as exc_info:
            executor.execute(CREATE_PLAN)

        assert exc_info.value.status_code == 429
        assert len(handler.requests) == 3
        assert isinstance(exc_info.value.__cause__, RateLimitError)


class TestRequestExecutorPermanentErrors:
    """Tests for errors that must never be retried."""

    @pytest.mark.parametrize("status", [401, 403, 404])
    def test_client_errors_not_retried(self, make_executor, sleep_recorder, status):
        handler = ScriptedHandler(
            httpx.Response(status, json={"error": {"code": "Denied", "message": "nope"}})
        )
        executor = make_executor(handler)

        with pytest.raises(PermanentClientError) as exc_info:
            executor.execute(CREATE_PLAN)

        assert exc_info.value.status_code == status
        assert "Denied: nope" in str(exc_info.value)
        assert len(handler.requests) == 1
        assert sleep_recorder.calls == []

    @pytest.mark.parametrize("status", [400, 422])
    def test_validation_failures(self, make_executor, status):
        executor = make_executor(ScriptedHandler(httpx.Response(status)))

        with pytest.raises(GraphValidationError):
            executor.execute(CREATE_PLAN)

    @pytest.mark.parametrize("status", [409, 412])
    def test_conditional_conflict(self, make_executor, status):
        """Test 409/412 on a conditional request is a concurrency conflict."""
        executor = make_executor(ScriptedHandler(httpx.Response(status)))
        operation = ApiOperation(
            "PATCH", "/planner/tasks/1/details", {"description": "x"}, headers={"If-Match": "e"}
        )

        with pytest.raises(ConcurrencyConflictError):
            executor.execute(operation)

    def test_conflict_without_precondition_is_plain_client_error(self, make_executor):
        executor = make_executor(ScriptedHandler(httpx.Response(409)))

        with pytest.raises(PermanentClientError) as exc_info:
            executor.execute(CREATE_PLAN)

        assert not isinstance(exc_info.value, ConcurrencyConflictError)


class TestRequestExecutorStats:
    """Tests for executor statistics."""

    def test_get_stats(self, make_executor):
        handler = ScriptedHandler(httpx.Response(500), ok(status=201), ok(status=201))
        executor = make_executor(handler)

        executor.execute(CREATE_PLAN)
        executor.execute(CREATE_PLAN)
        stats = executor.get_stats()

        assert stats["operations"] == 2
        assert stats["retries"] == 1
        assert stats["total_requests"] == 3
        assert stats["delay_ms"] == 0
