import threading
import time
from collections import deque
from functools import lru_cache
from typing import Callable, Protocol

from config import get_settings
from errors import RateLimitedError


class RateLimiter(Protocol):
    def hit(self, key: str) -> None: ...


class SlidingWindowRateLimiter:
    """Allow ``limit`` hits per key in any ``window_secs`` span.

    Process-local; a deployment with several workers needs a shared gate in
    front of the app instead. Keys whose hits have all expired are dropped.
    """

    def __init__(
        self,
        limit: int,
        window_secs: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit <= 0:
            raise ValueError("Rate limit must be positive")
        self.limit = limit
        self.window_secs = window_secs
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window_secs:
                hits.popleft()
            if not hits:
                del self._hits[key]

    def hit(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            self._prune(now)
            hits = self._hits.setdefault(key, deque())
            if len(hits) >= self.limit:
                retry_after = max(0.0, self.window_secs - (now - hits[0]))
                raise RateLimitedError(
                    "Too many requests. Please try again later.",
                    retry_after=round(retry_after, 1),
                )
            hits.append(now)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)


@lru_cache(maxsize=1)
def get_rate_limiter() -> SlidingWindowRateLimiter:
    settings = get_settings()
    return SlidingWindowRateLimiter(
        settings.rate_limit_requests, settings.rate_limit_window_secs
    )
