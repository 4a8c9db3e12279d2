"""
Keyed rate limiter.

Enforces a minimum interval between accepted calls per key (typically the
caller's user id). Keys are independent: one caller being limited never
affects another. The clock is injectable for tests.
"""

import threading
import time
from typing import Callable, Dict

from ..errors import RateLimitedError


class KeyedRateLimiter:
    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._last_call: Dict[str, float] = {}
        self._lock = threading.Lock()

    def retry_after(self, key: str) -> float:
        """Seconds until key may call again (0 when allowed now)."""
        with self._lock:
            last = self._last_call.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.interval_seconds - (self._clock() - last))

    def check(self, key: str) -> None:
        """Accept a call for key and record it.

        Raises:
            RateLimitedError: key called again within the interval
        """
        with self._lock:
            now = self._clock()
            last = self._last_call.get(key)
            if last is not None and now - last < self.interval_seconds:
                raise RateLimitedError(self.interval_seconds - (now - last))
            self._last_call[key] = now

    def reset(self, key: str = None) -> None:
        with self._lock:
            if key is None:
                self._last_call.clear()
            else:
                self._last_call.pop(key, None)
