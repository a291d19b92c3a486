"""Resilient execution of single Graph API operations.

``RequestExecutor`` is the only place that talks to the network. It applies:

- a fixed pre-request throttle delay on every attempt,
- failure classification (rate-limited, transient, permanent),
- rate limit recovery honouring ``Retry-After``,
- linear backoff for transient failures,
- a shared retry budget (rate-limited attempts count toward it).

The retry loop is a ``tenacity.Retrying`` controller; the sleep function is
injectable so tests can assert waits without actually waiting.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import StrEnum
from functools import partial
from typing import Any

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from plannerbridge.config.models import RetryConfig
from plannerbridge.exceptions import (
    ConcurrencyConflictError,
    GraphRequestError,
    GraphValidationError,
    PermanentClientError,
    RateLimitError,
    RetryExhaustedError,
    TransientNetworkError,
)
from plannerbridge.transport.client import GraphClient
from plannerbridge.transport.throttle import RequestThrottle

logger = logging.getLogger(__name__)

MUTATING_METHODS = frozenset({"POST", "PATCH", "PUT", "DELETE"})


class FailureKind(StrEnum):
    """How the executor reacts to a failed attempt."""

    RATE_LIMITED = "rate-limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class ApiOperation:
    """One logical Graph API operation.

    Attributes:
        method: HTTP method
        path: Path relative to the Graph base URL, e.g. ``/planner/tasks``
        payload: Optional JSON body
        params: Optional query parameters
        headers: Extra request headers (``If-Match`` for conditional updates)
    """

    method: str
    path: str
    payload: dict[str, Any] | None = None
    params: dict[str, str] | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_mutating(self) -> bool:
        return self.method.upper() in MUTATING_METHODS

    @property
    def is_conditional(self) -> bool:
        return any(name.lower() == "if-match" for name in self.headers)

    def __str__(self) -> str:
        return f"{self.method.upper()} {self.path}"


def classify_failure(error: BaseException) -> FailureKind:
    """Classify a failed attempt.

    Anything without structured status information (DNS failures, refused
    connections, unknown transport errors) is transient. Only
    ``GraphRequestError`` instances are ever retried, see
    ``RequestExecutor._is_retryable``.
    """
    if isinstance(error, RateLimitError):
        return FailureKind.RATE_LIMITED
    if isinstance(error, PermanentClientError):
        return FailureKind.PERMANENT
    if isinstance(error, TransientNetworkError):
        return FailureKind.TRANSIENT

    status = getattr(error, "status_code", None)
    if status is None:
        return FailureKind.TRANSIENT
    if status == 429:
        return FailureKind.RATE_LIMITED
    if status == 408 or status >= 500:
        return FailureKind.TRANSIENT
    return FailureKind.PERMANENT


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring unparseable Retry-After header: {value!r}")
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def _graph_error_message(response: httpx.Response) -> str:
    """Extract ``error.code: error.message`` from a Graph error body if present."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        code = error.get("code") or "error"
        message = error.get("message") or response.reason_phrase
        return f"HTTP {response.status_code} {code}: {message}"
    text = response.text.strip()[:200] if response.content else ""
    return f"HTTP {response.status_code} {response.reason_phrase}" + (f": {text}" if text else "")


def error_from_response(response: httpx.Response, operation: ApiOperation) -> GraphRequestError:
    """Translate a non-success response into the error taxonomy."""
    status = response.status_code
    message = f"{operation} failed: {_graph_error_message(response)}"

    if status == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        return RateLimitError(message, retry_after=retry_after)
    if status == 408 or status >= 500:
        return TransientNetworkError(message, status_code=status)
    if status in (409, 412) and operation.is_conditional:
        return ConcurrencyConflictError(message, status_code=status)
    if status in (400, 422):
        return GraphValidationError(message, status_code=status)
    return PermanentClientError(message, status_code=status)


class RequestExecutor:
    """Issues Graph API operations with throttling, backoff and rate limit recovery.

    Examples:
        >>> client = GraphClient("https://graph.microsoft.com/v1.0", token)
        >>> executor = RequestExecutor(client, RetryConfig())
        >>> body = {"owner": group_id, "title": "Q3 roadmap"}
        >>> plan = executor.execute(ApiOperation("POST", "/planner/plans", body))
        >>> plan["id"]
    """

    def __init__(
        self,
        client: GraphClient,
        config: RetryConfig | None = None,
        throttle: RequestThrottle | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize RequestExecutor.

        Args:
            client: Graph client for the target tenant
            config: Retry settings (defaults: 3 attempts, 2s linear step, 30s 429 fallback)
            throttle: Pre-request throttle; built from ``config`` when omitted
            sleep: Blocking sleep used for backoff and rate limit waits
        """
        self.client = client
        self.config = config or RetryConfig()
        self._sleep = sleep
        self.throttle = throttle or RequestThrottle(self.config.throttle_delay_ms, sleep=sleep)
        self.operations = 0
        self.retries = 0

    def execute(self, operation: ApiOperation, attempts: int | None = None) -> Any:
        """Execute one operation and return its decoded JSON body (``None`` if empty).

        Args:
            operation: The operation to run
            attempts: Override of the attempt budget (``1`` sends the request exactly once)

        Raises:
            PermanentClientError: On 4xx other than 429 (never retried)
            RetryExhaustedError: When rate-limited or transient failures use up the budget
        """
        self.operations += 1
        max_attempts = attempts or self.config.max_retries
        retrying = Retrying(
            retry=retry_if_exception(self._is_retryable),
            stop=stop_after_attempt(max_attempts),
            wait=self._wait_seconds,
            sleep=self._sleep,
            before_sleep=partial(self._log_retry, max_attempts=max_attempts),
            retry_error_callback=self._raise_exhausted,
        )
        return retrying(self._attempt, operation)

    def _attempt(self, operation: ApiOperation) -> Any:
        self.throttle.acquire()
        logger.debug(f"Graph request: {operation}")
        try:
            response = self.client.send(
                operation.method.upper(),
                operation.path,
                json=operation.payload,
                params=operation.params,
                headers=operation.headers or None,
            )
        except (httpx.HTTPError, OSError) as e:
            raise TransientNetworkError(f"{operation} failed: {type(e).__name__}: {e}") from e

        if response.is_success:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                # The request went through; resending a POST would duplicate it
                raise PermanentClientError(
                    f"{operation} returned an unreadable body: {e}",
                    status_code=response.status_code,
                ) from e

        raise error_from_response(response, operation)

    @staticmethod
    def _is_retryable(error: BaseException) -> bool:
        if not isinstance(error, GraphRequestError):
            return False
        return classify_failure(error) is not FailureKind.PERMANENT

    def wait_for(self, error: BaseException | None, attempt_number: int) -> float:
        """Seconds to wait after a failed attempt before the next one.

        Rate-limited attempts wait what the server advertised (or the configured
        fallback); everything else backs off linearly.
        """
        if isinstance(error, RateLimitError):
            if error.retry_after is not None:
                return error.retry_after
            return self.config.rate_limit_wait_seconds
        return attempt_number * self.config.base_delay_seconds

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def _wait_seconds(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.wait_for(error, retry_state.attempt_number)

    def _log_retry(self, retry_state: RetryCallState, max_attempts: int) -> None:
        self.retries += 1
        error = retry_state.outcome.exception() if retry_state.outcome else None
        kind = classify_failure(error) if error else FailureKind.TRANSIENT
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        operation = retry_state.args[0] if retry_state.args else "<operation>"

        if kind is FailureKind.RATE_LIMITED:
            self.throttle.on_rate_limit(wait)

        logger.warning(
            f"Retrying {operation}: attempt {retry_state.attempt_number}/"
            f"{max_attempts} failed ({kind}), waiting {wait:g}s: {error}"
        )

    def _raise_exhausted(self, retry_state: RetryCallState) -> Any:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        status = getattr(error, "status_code", None)
        operation = retry_state.args[0] if retry_state.args else "<operation>"
        attempts = retry_state.attempt_number
        logger.error(
            f"Giving up on {operation} after {attempts} attempt(s); "
            f"last status={status if status is not None else 'none'}: {error}"
        )
        raise RetryExhaustedError(
            f"{operation} failed after {attempts} attempt(s) "
            f"(last status: {status if status is not None else 'none'}): {error}",
            status_code=status,
            attempts=attempts,
        ) from error

    def get_stats(self) -> dict[str, int | float | str | None]:
        stats: dict[str, int | float | str | None] = {
            "operations": self.operations,
            "retries": self.retries,
        }
        stats.update(self.throttle.get_stats())
        return stats
