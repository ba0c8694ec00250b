"""
Rate limiting. In-memory sliding window per key (e.g. per client IP).
Used for POST /oauth/token to slow down client secret guessing.
"""
import math
import threading
import time
from typing import Callable


class SlidingWindowLimiter:
    def __init__(self, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._store: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str, limit: int) -> tuple[bool, int | None]:
        """
        Check if key is under limit for the window; if so, record this request.
        Returns (allowed, retry_after_seconds); retry_after is >= 1 when not allowed.
        """
        if limit <= 0:
            return True, None
        now = self._clock()
        with self._lock:
            timestamps = self._store.setdefault(key, [])
            cutoff = now - self.window_seconds
            timestamps[:] = [t for t in timestamps if t > cutoff]
            if len(timestamps) >= limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - timestamps[0])))
                return False, retry_after
            timestamps.append(now)
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._store.clear()


token_limiter = SlidingWindowLimiter()
