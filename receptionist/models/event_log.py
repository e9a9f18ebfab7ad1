"""
Processed event log used for webhook idempotency.

Holds the ids of events already accepted, each for a bounded retention window.
record_if_new is atomic, so concurrent deliveries of the same provider event are
accepted exactly once. discard releases an id whose event could not be handed on.
The outcome dispatcher reuses the same structure for its dispatched-call record.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from receptionist.config.constants import DEFAULT_EVENT_RETENTION


class ProcessedEventLog:
    """Bounded set of processed event ids with time-based retention."""

    def __init__(self, retention_seconds: float = DEFAULT_EVENT_RETENTION,
                 max_entries: int = 100_000,
                 clock: Callable[[], float] = time.monotonic):
        self.retention_seconds = retention_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def record_if_new(self, event_id: str, now: Optional[float] = None) -> bool:
        """
        Record event_id if it has not been seen within the retention window.

        Returns:
            True if the id was new and is now recorded, False if it is a duplicate
        """
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            if event_id in self._entries:
                return False
            self._entries[event_id] = now
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return True

    def discard(self, event_id: str) -> bool:
        """Forget event_id so a later delivery of it is processed again."""
        with self._lock:
            return self._entries.pop(event_id, None) is not None

    def contains(self, event_id: str, now: Optional[float] = None) -> bool:
        now = self._clock() if now is None else now
        with self._lock:
            self._purge(now)
            return event_id in self._entries

    def _purge(self, now: float) -> None:
        # Entries are in insertion (and therefore time) order
        cutoff = now - self.retention_seconds
        while self._entries:
            oldest_id, recorded_at = next(iter(self._entries.items()))
            if recorded_at > cutoff:
                break
            del self._entries[oldest_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
