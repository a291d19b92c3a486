"""Custom exception classes for plannerbridge."""


class PlannerBridgeError(Exception):
    """Base exception for all plannerbridge errors."""

    pass


class ConfigError(PlannerBridgeError):
    """Exception raised for configuration errors."""

    pass


class ValidationError(PlannerBridgeError):
    """Exception raised when an export document fails schema validation."""

    pass


class StorageError(PlannerBridgeError):
    """Exception raised when restoration records cannot be written or read."""

    pass


class RestorationError(PlannerBridgeError):
    """Exception raised for restoration workflow errors."""

    pass


class GraphRequestError(PlannerBridgeError):
    """Base class for failures of a single Graph API operation.

    Carries the HTTP status code when the remote provided one. Network-level
    failures (DNS, refused connections, timeouts) have ``status_code=None``.
    """

    error_type = "GraphRequestError"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(GraphRequestError):
    """Exception raised when API rate limit is exceeded (retryable)."""

    error_type = "RateLimited"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        status_code: int | None = 429,
    ):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retrying, as advertised by the server
            status_code: HTTP status code (429 unless the server signalled otherwise)
        """
        self.retry_after = retry_after
        if retry_after:
            message = f"{message}. Retry after {retry_after:g}s"
        super().__init__(message, status_code)


class TransientNetworkError(GraphRequestError):
    """Exception raised for timeouts, connection failures and 5xx responses (retryable)."""

    error_type = "TransientNetwork"


class PermanentClientError(GraphRequestError):
    """Exception raised for 4xx responses other than rate limiting (never retried)."""

    error_type = "PermanentClient"


class ConcurrencyConflictError(PermanentClientError):
    """Exception raised when an update is rejected because its version token is stale."""

    error_type = "ConcurrencyConflict"


class GraphValidationError(PermanentClientError):
    """Exception raised when the remote rejects a payload as invalid (400/422)."""

    error_type = "ValidationFailure"


class RetryExhaustedError(GraphRequestError):
    """Exception raised when retryable failures outlast the retry budget."""

    error_type = "RetryExhausted"

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message, status_code)
