"""In-process sliding-window rate limiter shared by the threads of one pool."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

_MIN_WAIT_SECONDS = 0.001


class RateLimiter:
    """Allow at most ``max_calls`` acquisitions in any ``period_seconds`` window.

    The window slides: each acquisition timestamp expires individually, so a
    burst at the end of one second does not double the allowance at the start
    of the next.

    Attributes:
        max_calls: Calls allowed per window.
        period_seconds: Window length in seconds.
    """

    def __init__(
        self,
        *,
        max_calls: int,
        period_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls <= 0:
            raise ValueError("max_calls must be > 0")
        if period_seconds <= 0:
            raise ValueError("period_seconds must be > 0")
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._lock = threading.Lock()

    def try_acquire(self) -> float:
        """Take a slot if one is free.

        Returns:
            0.0 when the slot was taken, otherwise the seconds to wait before
            the oldest call in the window expires.
        """

        with self._lock:
            now = self._clock()
            self._expire(now)
            if len(self._calls) < self.max_calls:
                self._calls.append(now)
                return 0.0
            return max(_MIN_WAIT_SECONDS, self._calls[0] + self.period_seconds - now)

    def acquire(self, stop_requested: Callable[[], bool] | None = None) -> bool:
        """Block until a slot is free; False if stop was requested while waiting."""

        while True:
            if stop_requested is not None and stop_requested():
                return False
            wait_seconds = self.try_acquire()
            if wait_seconds == 0.0:
                return True
            logger.debug("Rate limit reached, waiting %.3fs", wait_seconds)
            self._sleep(min(wait_seconds, 0.1))

    def _expire(self, now: float) -> None:
        cutoff = now - self.period_seconds
        while self._calls and self._calls[0] <= cutoff:
            self._calls.popleft()
