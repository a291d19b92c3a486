"""Fixed-delay request throttling for the Graph per-minute quota."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class ThrottleState:
    """Counters describing how much the run has been throttled.

    Attributes:
        total_requests: Requests released by the throttle
        total_wait_seconds: Time spent in the fixed pre-request delay
        total_429_count: Rate limit responses reported back by the executor
        rate_limit_wait_seconds: Time spent waiting out rate limit responses
        last_429_timestamp: When the most recent rate limit response arrived
    """

    total_requests: int = 0
    total_wait_seconds: float = 0.0
    total_429_count: int = 0
    rate_limit_wait_seconds: float = 0.0
    last_429_timestamp: datetime | None = None

    def on_rate_limit_detected(self, wait_seconds: float) -> None:
        self.total_429_count += 1
        self.rate_limit_wait_seconds += wait_seconds
        self.last_429_timestamp = datetime.now()

        logger.warning(
            f"Rate limit detected (429). Total: {self.total_429_count}. "
            f"Waiting {wait_seconds:g}s before retrying"
        )

    def get_stats(self) -> dict[str, int | float | str | None]:
        return {
            "total_requests": self.total_requests,
            "throttle_wait_seconds": round(self.total_wait_seconds, 3),
            "total_429_count": self.total_429_count,
            "rate_limit_wait_seconds": round(self.rate_limit_wait_seconds, 3),
            "last_429": self.last_429_timestamp.isoformat() if self.last_429_timestamp else None,
        }


class RequestThrottle:
    """Blocks for a fixed delay before every request.

    The delay is applied unconditionally, first attempts included: the Graph
    quota is per minute and a single-threaded run stays under it by spacing
    requests evenly rather than by tracking a window.

    Not thread-safe. The restoration run is single-threaded; parallel callers
    would need a lock around ``acquire`` and the state counters.

    Example:
        >>> throttle = RequestThrottle(delay_ms=500)
        >>> throttle.acquire()  # sleeps 0.5s
        >>> response = make_api_call()
    """

    def __init__(self, delay_ms: int = 500, sleep: Callable[[float], None] = time.sleep):
        """Initialize the throttle.

        Args:
            delay_ms: Fixed delay before each request, in milliseconds
            sleep: Blocking sleep function (injectable for tests)
        """
        self.delay_seconds = delay_ms / 1000.0
        self._sleep = sleep
        self.state = ThrottleState()

    def acquire(self) -> None:
        """Wait the fixed delay, then release one request."""
        if self.delay_seconds > 0:
            self._sleep(self.delay_seconds)
            self.state.total_wait_seconds += self.delay_seconds
        self.state.total_requests += 1

    def on_rate_limit(self, wait_seconds: float) -> None:
        self.state.on_rate_limit_detected(wait_seconds)

    def get_stats(self) -> dict[str, int | float | str | None]:
        stats: dict[str, int | float | str | None] = {"delay_ms": int(self.delay_seconds * 1000)}
        stats.update(self.state.get_stats())
        return stats

    def __repr__(self) -> str:
        return (
            f"RequestThrottle(delay={self.delay_seconds:g}s, "
            f"requests={self.state.total_requests}, 429s={self.state.total_429_count})"
        )
