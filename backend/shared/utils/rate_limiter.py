"""
Per-source fixed-interval throttling.
Each source gets its own limiter, so waiting on one source never delays another.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class IntervalLimiter:
    """
    Serializes callers so that consecutive slots are at least `min_interval_s` apart.
    The lock is held across the wait; callers queue in arrival order.
    """

    def __init__(
        self,
        min_interval_s: float,
        sleep: SleepFn = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._interval = max(0.0, min_interval_s)
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def min_interval_s(self) -> float:
        return self._interval

    @property
    def last_call(self) -> Optional[float]:
        return self._last_call

    async def acquire(self) -> float:
        """Wait for the next slot. Returns seconds spent waiting."""
        async with self._lock:
            waited = 0.0
            if self._last_call is not None:
                wait = self._interval - (self._monotonic() - self._last_call)
                if wait > 0:
                    await self._sleep(wait)
                    waited = wait
            self._last_call = self._monotonic()
            return waited


class SourceRateLimiter:
    """Lazily creates one IntervalLimiter per source name."""

    def __init__(
        self,
        intervals: dict[str, float],
        default_interval_s: float = 0.0,
        sleep: SleepFn = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._intervals = dict(intervals)
        self._default = default_interval_s
        self._sleep = sleep
        self._monotonic = monotonic
        self._limiters: dict[str, IntervalLimiter] = {}

    def limiter(self, source: str) -> IntervalLimiter:
        limiter = self._limiters.get(source)
        if limiter is None:
            limiter = IntervalLimiter(
                self._intervals.get(source, self._default),
                sleep=self._sleep,
                monotonic=self._monotonic,
            )
            self._limiters[source] = limiter
        return limiter

    async def wait_for_slot(self, source: str) -> None:
        waited = await self.limiter(source).acquire()
        if waited > 0:
            logger.debug("rate_limit_wait", source=source, waited_s=round(waited, 3))
