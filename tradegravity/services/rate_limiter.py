"""Token-bucket rate limiter owned by each provider instance.

The bucket holds up to ``burst`` tokens and gains one token every
``1 / rate_per_sec`` seconds; a token arriving while the bucket is full is
dropped. Each HTTP request a provider issues takes one token first.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucketLimiter:
    """Admission control shared by all requests of one provider.

    A limiter with ``rate_per_sec <= 0`` never blocks. Waiters are not served
    in any particular order.
    """

    def __init__(
        self,
        rate_per_sec: float,
        burst: int = 1,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            rate_per_sec: Tokens added per second (<= 0 disables limiting)
            burst: Bucket capacity; the bucket starts full
            name: Provider name used in log messages
            clock: Monotonic clock, replaceable in tests
        """
        self.name = name
        self.rate_per_sec = rate_per_sec
        self.burst = max(int(burst), 1)
        self._clock = clock
        self._tokens = self.burst
        self._last_refill = clock()
        self._interval = 1.0 / rate_per_sec if rate_per_sec > 0 else 0.0

    @property
    def enabled(self) -> bool:
        return self.rate_per_sec > 0

    @property
    def available(self) -> int:
        """Tokens currently in the bucket."""
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        if not self.enabled:
            return
        now = self._clock()
        ticks = int((now - self._last_refill) // self._interval)
        if ticks <= 0:
            return
        self._tokens = min(self.burst, self._tokens + ticks)
        if self._tokens == self.burst:
            self._last_refill = now
        else:
            self._last_refill += ticks * self._interval

    def try_acquire(self) -> bool:
        """Take a token without waiting. Returns False when the bucket is empty."""
        if not self.enabled:
            return True
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def wait(self) -> float:
        """
        Wait until a token is available and take it.

        Cancelling the calling task aborts the wait with
        ``asyncio.CancelledError``.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while not self.try_acquire():
            delay = max(self._interval - (self._clock() - self._last_refill), 0.001)
            logger.debug(f"{self.name or 'provider'} rate limit: waiting {delay:.3f}s for a token")
            await asyncio.sleep(delay)
            waited += delay
        return waited
