"""
Call aggregate and its state/outcome vocabularies.

A Call is created on the first initiated/answered event for a call_control_id and
is written only by its call worker (through the state machine). The transcript is
append-only for finalized entries: only the trailing entry can still be open
(final=False) while an agent response or a caller utterance is streaming, and it
is completed in place. The outcome is set exactly once, on the terminal transition.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class CallState(str, Enum):
    """Lifecycle states of a call."""

    RINGING = "ringing"
    ANSWERED = "answered"
    AI_ACTIVE = "ai-active"
    COMPLETED = "completed"
    VOICEMAIL_FALLBACK = "voicemail-fallback"
    NO_ANSWER = "no-answer"
    ERROR = "error"
    ENDED = "ended"


class CallOutcome(str, Enum):
    """Terminal outcome recorded when a call reaches ended."""

    ANSWERED_BY_AI = "answered-by-ai"
    VOICEMAIL_FALLBACK = "voicemail-fallback"
    NO_ANSWER = "no-answer"
    CALLER_HANGUP = "caller-hangup"
    ERROR = "error"


class Speaker(str, Enum):
    CALLER = "caller"
    AGENT = "agent"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Utterance(BaseModel):
    """One transcript entry, in the order the bridge observed it."""

    speaker: Speaker
    text: str
    response_id: Optional[str] = None
    final: bool = True
    received_at: datetime = Field(default_factory=utc_now)


class Call(BaseModel):
    """Aggregate root for one phone call."""

    call_id: str = Field(..., description="Provider-assigned call_control_id")
    tenant_id: Optional[str] = Field(None, description="Owning business")
    state: CallState = CallState.RINGING
    started_at: datetime = Field(default_factory=utc_now)
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    direction: Optional[str] = None
    outcome: Optional[CallOutcome] = None
    recording_url: Optional[str] = None
    appointment_booked: bool = False
    failure_reason: Optional[str] = None
    transcript: List[Utterance] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.state == CallState.ENDED

    def set_outcome(self, outcome: CallOutcome) -> None:
        """Record the terminal outcome. Raises if an outcome was already set."""
        if self.outcome is not None:
            raise ValueError(
                f"Outcome already set for call {self.call_id}: {self.outcome.value}"
            )
        self.outcome = outcome

    def duration_seconds(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def snapshot(self) -> dict:
        """JSON-ready projection used for the call log and the state query endpoint."""
        data = self.model_dump(mode="json")
        data["duration_seconds"] = self.duration_seconds()
        return data
