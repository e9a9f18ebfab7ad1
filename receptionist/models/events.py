"""
Call events and the typed inputs consumed by call workers.

CallEvent is the normalized, immutable form of one provider webhook event.
CallInput wraps either a CallEvent or an engine-internal signal (session ready,
session failed, timeout, ...) so that every per-call input flows through the same
queue and the same state machine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from receptionist.models.call import utc_now


class CallEventType(str, Enum):
    """Types of call events received from the telephony provider."""

    INITIATED = "initiated"
    ANSWERED = "answered"
    HANGUP = "hangup"
    RECORDING_READY = "recording-ready"
    DTMF = "dtmf"
    ERROR = "error"


class CallEvent(BaseModel):
    """Normalized telephony event. Immutable once received."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Unique event id used for deduplication")
    call_id: str = Field(..., description="Provider call_control_id")
    event_type: CallEventType
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    direction: Optional[str] = None
    state: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    recording_url: Optional[str] = None
    digit: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def source(self) -> str:
        """Identity used for rate limiting."""
        return self.from_number or self.call_id


class InputType(str, Enum):
    """Everything a call worker can be asked to process."""

    INITIATED = "initiated"
    ANSWERED = "answered"
    HANGUP = "hangup"
    RECORDING_READY = "recording-ready"
    DTMF = "dtmf"
    ERROR = "error"
    AI_SESSION_READY = "ai-session-ready"
    AI_SESSION_FAILED = "ai-session-failed"
    AI_SESSION_COMPLETED = "ai-session-completed"
    TIMEOUT = "timeout"
    MEDIA_ATTACHED = "media-attached"
    BOOKING_CONFIRMED = "booking-confirmed"


@dataclass
class CallInput:
    """One unit of work for a call worker."""

    type: InputType
    call_id: str
    event: Optional[CallEvent] = None
    reason: Optional[str] = None
    payload: Any = None
    received_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_event(cls, event: CallEvent) -> "CallInput":
        return cls(type=InputType(event.event_type.value), call_id=event.call_id, event=event)

    @classmethod
    def internal(cls, input_type: InputType, call_id: str,
                 reason: Optional[str] = None, payload: Any = None) -> "CallInput":
        return cls(type=input_type, call_id=call_id, reason=reason, payload=payload)
