"""
Error taxonomy for the call orchestration engine.

Only AuthenticationError (and the ingress-level ThrottledError/PayloadError) is
ever surfaced to the telephony provider as a rejected request. The others are
absorbed by the call workers as ordinary inputs or logged and discarded.
"""


class ReceptionistError(Exception):
    """Base class for all engine errors."""


class AuthenticationError(ReceptionistError):
    """Webhook signature missing, stale or invalid."""


class ThrottledError(ReceptionistError):
    """Source identity exceeded its sliding-window event budget."""

    def __init__(self, source: str, retry_after: float):
        super().__init__(f"Rate limit exceeded for {source}")
        self.source = source
        self.retry_after = retry_after


class PayloadError(ReceptionistError):
    """Webhook body could not be parsed."""


class DuplicateEventError(ReceptionistError):
    """Event id already processed; benign."""

    def __init__(self, event_id: str):
        super().__init__(f"Event already processed: {event_id}")
        self.event_id = event_id


class InvalidTransitionError(ReceptionistError):
    """Event not permitted from the call's current state; benign."""

    def __init__(self, call_id: str, state, event_type):
        super().__init__(
            f"Event {getattr(event_type, 'value', event_type)} not valid from "
            f"state {getattr(state, 'value', state)} for call {call_id}"
        )
        self.call_id = call_id
        self.state = state
        self.event_type = event_type


class SessionUnavailable(ReceptionistError):
    """AI session could not be opened or was lost."""


class TransportError(ReceptionistError):
    """A leg of the audio bridge failed."""


class DispatchError(ReceptionistError):
    """A collaborator call made by the outcome dispatcher failed."""
