"""
Call registry: the in-memory home of every live Call aggregate.

The registry is one of the few structures shared between call workers and the
webhook ingress, so every operation is a single critical section under a
threading lock that is never held across an await. get_or_create is atomic:
concurrent creators of the same unseen call_id all receive the first instance.
Durable persistence happens through the outcome dispatcher's call log write when
a call ends; the entry itself is evicted by the call's worker after a grace period.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from receptionist.config.constants import LOGGER_NAME
from receptionist.models.call import Call, CallState

logger = logging.getLogger(LOGGER_NAME)


class CallRegistry:
    """Concurrency-safe key-value store of Call aggregates keyed by call_id."""

    def __init__(self):
        self._calls: Dict[str, Call] = {}
        self._lock = threading.Lock()

    def get_or_create(self, call_id: str, tenant_id: Optional[str] = None,
                      **attributes) -> Tuple[Call, bool]:
        """
        Return the Call for call_id, creating it in the ringing state if unseen.

        Args:
            call_id: Provider call_control_id
            tenant_id: Owning business, used only on creation
            **attributes: Extra Call fields (from_number, to_number, direction) used on creation

        Returns:
            Tuple of (call, created) where created is True only for the caller that created it
        """
        with self._lock:
            call = self._calls.get(call_id)
            if call is not None:
                return call, False
            call = Call(call_id=call_id, tenant_id=tenant_id, state=CallState.RINGING, **attributes)
            self._calls[call_id] = call
        logger.info(f"Call registered: {call_id} (tenant: {tenant_id})")
        return call, True

    def get(self, call_id: str) -> Optional[Call]:
        with self._lock:
            return self._calls.get(call_id)

    def save(self, call: Call) -> None:
        """Store the given aggregate as the current version for its call_id."""
        with self._lock:
            self._calls[call.call_id] = call

    def evict(self, call_id: str) -> Optional[Call]:
        """Remove a call from memory. Safe to call for unknown ids."""
        with self._lock:
            call = self._calls.pop(call_id, None)
        if call is not None:
            logger.info(f"Call evicted from registry: {call_id}")
        return call

    def active_calls(self) -> List[Call]:
        """Calls that have not yet reached ended."""
        with self._lock:
            return [call for call in self._calls.values() if not call.is_terminal]

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)

    def __contains__(self, call_id: str) -> bool:
        with self._lock:
            return call_id in self._calls
