"""
Sliding-window rate limiter keyed by source identity (phone number or provider account).
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional

from receptionist.exceptions import ThrottledError


class SlidingWindowRateLimiter:
    """Allows at most max_events per source within any window of window_seconds."""

    def __init__(self, max_events: int, window_seconds: float,
                 clock: Callable[[], float] = time.monotonic):
        if max_events <= 0 or window_seconds <= 0:
            raise ValueError("Rate limit and window must be positive")
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, source: str, now: Optional[float] = None) -> bool:
        """Count one event for source. Returns False (and counts nothing) when over the limit."""
        return self._hit(source, now)[0]

    def check(self, source: str, now: Optional[float] = None) -> None:
        """
        Count one event for source.

        Raises:
            ThrottledError: if the source is over its limit
        """
        allowed, retry_after = self._hit(source, now)
        if not allowed:
            raise ThrottledError(source, retry_after)

    def _hit(self, source: str, now: Optional[float]):
        now = self._clock() if now is None else now
        cutoff = now - self.window_seconds
        with self._lock:
            hits = self._hits.setdefault(source, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_events:
                return False, hits[0] + self.window_seconds - now
            hits.append(now)
            if len(self._hits) > 10_000:
                self._prune(cutoff)
            return True, 0.0

    def _prune(self, cutoff: float) -> None:
        for source in [s for s, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[source]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)
