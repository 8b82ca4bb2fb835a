"""Request spacing for page navigation."""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional

from community_scraper.config import RateLimitConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """
    Time-based admission control for outbound requests.

    ``acquire()`` guarantees at least ``min_delay_sec`` between granted
    acquisitions. Acquisitions are serialized with a lock so sources scraped
    in parallel still share one global spacing.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the rate limiter with configuration.

        Args:
            config: Rate limiting configuration
            clock: Monotonic time source, injectable for tests
            sleep: Async sleep function, injectable for tests
            rng: Random generator used for jittered delays
        """
        self.config = config or RateLimitConfig()
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.last_acquired: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Suspend until ``min_delay_sec`` has passed since the previous acquisition."""
        async with self._lock:
            if self.last_acquired is not None:
                wait = self.config.min_delay_sec - (self.clock() - self.last_acquired)
                if wait > 0:
                    logger.debug(f"Rate limiter waiting {wait:.2f}s")
                    await self.sleep(wait)
            self.last_acquired = self.clock()

    async def random_delay(self, min_sec: Optional[float] = None, max_sec: Optional[float] = None) -> float:
        """
        Suspend for a uniformly random duration.

        Args:
            min_sec: Lower bound, defaults to ``min_delay_sec``
            max_sec: Upper bound, defaults to ``max_delay_sec``

        Returns:
            The duration slept, in seconds
        """
        low = self.config.min_delay_sec if min_sec is None else min_sec
        high = self.config.max_delay_sec if max_sec is None else max_sec
        delay = self.rng.uniform(low, max(low, high))
        await self.sleep(delay)
        return delay

    async def item_delay(self) -> float:
        """Short jittered pause between items of one source."""
        return await self.random_delay(self.config.item_delay_min_sec, self.config.item_delay_max_sec)

    async def handle_429(self, retry_after: Optional[str] = None) -> None:
        """
        Handle a 429 Too Many Requests response.

        Args:
            retry_after: Value of the Retry-After header, if available
        """
        wait_seconds = self.config.default_retry_after_sec
        if retry_after:
            try:
                wait_seconds = float(retry_after)
            except (ValueError, TypeError):
                logger.warning(f"Unparseable Retry-After header {retry_after!r}, using default")

        wait_seconds += self.config.sleep_buffer_sec
        logger.warning(f"Rate limited (429). Waiting for {wait_seconds:.2f}s before retrying.")
        await self.sleep(wait_seconds)
        self.last_acquired = self.clock()
