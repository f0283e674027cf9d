#Purpose: Requests-per-minute guard shared by every batch run.
#Sliding one-minute window of request timestamps plus a minimum spacing between requests.
#The window is mutated under a lock so the count stays exact with concurrent callers.

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Deque

logger = logging.getLogger(__name__)

WINDOW_S = 60.0


class RateLimiter:
    def __init__(
        self,
        requests_per_minute: int,
        *,
        min_interval_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be >= 1")
        if min_interval_s < 0:
            raise ValueError("min_interval_s must be >= 0")

        self.requests_per_minute = requests_per_minute
        self.min_interval_s = min_interval_s
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._granted: Deque[float] = deque()  # timestamps inside the current window

    def try_acquire(self) -> float:
        """
        Take a slot if one is free. Returns 0.0 when granted, otherwise how long to wait.
        """
        now = self._clock()
        with self._lock:
            while self._granted and now - self._granted[0] >= WINDOW_S:
                self._granted.popleft()

            wait = 0.0
            if len(self._granted) >= self.requests_per_minute:
                wait = WINDOW_S - (now - self._granted[0])
            if self._granted and self.min_interval_s:
                wait = max(wait, self.min_interval_s - (now - self._granted[-1]))

            if wait > 0:
                return wait

            self._granted.append(now)
            return 0.0

    async def acquire(self) -> None:
        while True:
            wait = self.try_acquire()
            if wait <= 0:
                return
            logger.debug("Rate limit reached, waiting %.2fs", wait)
            await self._sleep(wait)

    def current_count(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for granted_at in self._granted if now - granted_at < WINDOW_S)
