# ---------------------------
# botqueue/jobs/throttle.py
# ---------------------------
# Global cap on handlers that call rate-limited generation providers:
# at most N running at once and at most M started per minute.
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from pyrate_limiter import BucketFullException, Duration, Limiter, Rate

from botqueue.errors import ThrottleTimeout

logger = logging.getLogger("uvicorn.error")

RATE_KEY = "generation"


class GenerationThrottle:
    def __init__(self, max_concurrent: int = 5, per_minute: int = 10, poll_seconds: float = 0.5):
        if max_concurrent <= 0 or per_minute <= 0:
            raise ValueError("throttle limits must be positive")
        self.max_concurrent = max_concurrent
        self.per_minute = per_minute
        self.poll_seconds = poll_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._limiter = Limiter(Rate(per_minute, Duration.MINUTE), raise_when_fail=False)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _try_acquire_rate(self) -> bool:
        try:
            return bool(self._limiter.try_acquire(RATE_KEY))
        except BucketFullException:
            return False

    async def _wait_for_rate(self, deadline: Optional[float]) -> None:
        while not self._try_acquire_rate():
            if deadline is not None and time.monotonic() + self.poll_seconds > deadline:
                raise ThrottleTimeout(f"Generation rate limit ({self.per_minute}/min) reached; deferred")
            await asyncio.sleep(self.poll_seconds)

    @asynccontextmanager
    async def slot(self, deadline: Optional[float] = None) -> AsyncIterator[None]:
        """Hold one concurrency slot and one per-minute token for the body.

        `deadline` is a time.monotonic() value; waiting past it raises ThrottleTimeout.
        """
        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ThrottleTimeout(
                f"No generation slot free ({self.max_concurrent} concurrent); deferred"
            ) from None
        self._in_flight += 1
        try:
            await self._wait_for_rate(deadline)
            yield
        finally:
            self._in_flight -= 1
            self._semaphore.release()
