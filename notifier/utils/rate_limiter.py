"""Sliding-window rate limiter shared by the worker pool."""
import asyncio
import time
from collections import deque
from typing import Callable


class RateLimiter:
    """
    Allow at most `max_events` acquisitions per `window_seconds`.

    acquire() sleeps until a slot frees up instead of rejecting the caller.
    """

    def __init__(
        self,
        max_events: int,
        window_seconds: float,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if max_events < 1:
            raise ValueError("max_events must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_events = int(max_events)
        self.window_seconds = float(window_seconds)
        self._monotonic = monotonic
        self._events: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _trim(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._monotonic()
                self._trim(now)
                if len(self._events) < self.max_events:
                    self._events.append(now)
                    return
                wait = self._events[0] + self.window_seconds - now
                await asyncio.sleep(max(wait, 0.001))

    def in_window(self) -> int:
        self._trim(self._monotonic())
        return len(self._events)
