"""Reservoir based limiter for outbound Battle.net requests.

The remote API grants a fixed number of requests per window. The limiter holds
three constraints at once:

* a reservoir of tokens, refilled wholesale when the window elapses,
* a ceiling on requests in flight,
* a minimum spacing between two dispatches.

Callers wait in FIFO order; nothing is ever dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from rostersync.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]


class ReservoirLimiter:
    def __init__(
        self,
        *,
        reservoir: int,
        refresh_interval: float,
        max_concurrent: int,
        min_time: float,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        if reservoir < 1:
            raise ValueError("reservoir must be at least 1")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if min_time < 0:
            raise ValueError("min_time cannot be negative")
        self.capacity = reservoir
        self.refresh_interval = refresh_interval
        self.max_concurrent = max_concurrent
        self.min_time = min_time
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._remaining = reservoir
        self._window_started = self._clock()
        self._last_dispatch: Optional[float] = None
        self._slots = asyncio.Semaphore(max_concurrent)
        # asyncio.Lock wakes waiters in arrival order, which gives us FIFO dispatch.
        self._dispatch_lock = asyncio.Lock()
        self._running = 0

    @classmethod
    def from_settings(cls) -> "ReservoirLimiter":
        return cls(
            reservoir=settings.BNET_RESERVOIR,
            refresh_interval=settings.BNET_RESERVOIR_REFRESH_SECONDS,
            max_concurrent=settings.BNET_MAX_CONCURRENT,
            min_time=settings.BNET_MIN_TIME_MS / 1000,
        )

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> int:
        return self._running

    def _refill_if_due(self) -> None:
        now = self._clock()
        if now - self._window_started >= self.refresh_interval:
            self._remaining = self.capacity
            self._window_started = now

    async def _admit(self, job_id: str) -> None:
        async with self._dispatch_lock:
            self._refill_if_due()
            while self._remaining <= 0:
                wait_for = self._window_started + self.refresh_interval - self._clock()
                logger.warning(
                    "Battle.net reservoir exhausted; job %s waiting %.1fs for refill",
                    job_id,
                    max(wait_for, 0),
                )
                await self._sleep(max(wait_for, 0))
                self._refill_if_due()
            if self._last_dispatch is not None:
                gap = self._last_dispatch + self.min_time - self._clock()
                if gap > 0:
                    await self._sleep(gap)
            self._remaining -= 1
            self._last_dispatch = self._clock()

    async def schedule(self, job_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once admitted. Cancellation at any point releases the held slot."""
        async with self._slots:
            await self._admit(job_id)
            self._running += 1
            try:
                logger.debug("Dispatching job %s (%s left in window)", job_id, self._remaining)
                return await fn()
            finally:
                self._running -= 1
