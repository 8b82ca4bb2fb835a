"""Error tracking and retry logic for page navigation."""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, cast

from community_scraper.collector.rate_limiter import RateLimiter
from community_scraper.exceptions import NavigationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncFunc = Callable[..., Awaitable[T]]
RetryHook = Callable[[NavigationError, int], Awaitable[None]]


class ConsecutiveErrorTracker:
    """Tracker for consecutive navigation failures with threshold checking."""

    def __init__(self, threshold: int, prometheus_exporter=None):
        """
        Initialize the error tracker.

        Args:
            threshold: Number of consecutive failures that counts as a streak
            prometheus_exporter: Optional Prometheus exporter for metrics
        """
        self.threshold = threshold
        self.consecutive_errors = 0
        self.prometheus_exporter = prometheus_exporter

    def record_error(self, kind: str = "navigation") -> None:
        """Record a failure and increment the counter."""
        self.consecutive_errors += 1
        logger.warning(f"Consecutive navigation errors: {self.consecutive_errors}/{self.threshold}")

        if self.prometheus_exporter:
            self.prometheus_exporter.set_consecutive_errors(self.consecutive_errors)
            self.prometheus_exporter.record_navigation_error(kind)

    def record_success(self) -> None:
        """Record a successful request, resetting the consecutive error count."""
        if self.consecutive_errors > 0:
            logger.info(f"Resetting consecutive error counter (was {self.consecutive_errors})")
            self.consecutive_errors = 0

            if self.prometheus_exporter:
                self.prometheus_exporter.set_consecutive_errors(0)

    def threshold_reached(self) -> bool:
        return self.consecutive_errors >= self.threshold

    def reset(self) -> None:
        self.consecutive_errors = 0


def _error_kind(error: NavigationError) -> str:
    if error.status is None:
        return "network"
    if error.status == 429:
        return "429"
    if 500 <= error.status < 600:
        return "5xx"
    return "4xx"


def with_exponential_backoff(
    max_attempts: int = 3,
    initial_backoff: float = 5.0,
    max_backoff: float = 30.0,
    backoff_factor: float = 2.0,
    error_tracker: Optional[ConsecutiveErrorTracker] = None,
    rate_limiter: Optional[RateLimiter] = None,
    on_retry: Optional[RetryHook] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Callable[[AsyncFunc[T]], AsyncFunc[T]]:
    """
    Decorator for retrying page fetches with exponential backoff.

    Every ``NavigationError`` (non-2xx status or network failure) counts as an
    attempt. A 429 waits for ``Retry-After`` through the rate limiter instead
    of the backoff. Other exceptions propagate immediately.

    Args:
        max_attempts: Total attempts including the first one
        initial_backoff: Initial backoff time in seconds
        max_backoff: Maximum backoff time in seconds
        backoff_factor: Multiplier for backoff time between retries
        error_tracker: Optional tracker for consecutive failures
        rate_limiter: Optional rate limiter for handling 429 responses
        on_retry: Awaited with the error and attempt number before each retry
        sleep: Async sleep function

    Returns:
        Decorator function
    """
    def decorator(func: AsyncFunc[T]) -> AsyncFunc[T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            backoff = initial_backoff

            while True:
                attempt += 1
                try:
                    result = await func(*args, **kwargs)

                    if error_tracker:
                        error_tracker.record_success()

                    return result

                except NavigationError as e:
                    e.attempts = attempt
                    if error_tracker:
                        error_tracker.record_error(_error_kind(e))

                    if attempt >= max_attempts:
                        logger.error(f"Giving up on {e.url} after {attempt} attempts: {e}")
                        raise

                    if on_retry:
                        await on_retry(e, attempt)

                    if e.status == 429 and rate_limiter:
                        retry_after = e.headers.get("retry-after") if e.headers else None
                        await rate_limiter.handle_429(retry_after)
                        continue

                    logger.warning(
                        f"Navigation to {e.url} failed ({_error_kind(e)}): {e}. "
                        f"Retrying in {backoff:.2f}s ({attempt}/{max_attempts})"
                    )
                    await sleep(backoff)
                    backoff = min(backoff * backoff_factor, max_backoff)

        return cast(AsyncFunc[T], wrapper)
    return decorator
