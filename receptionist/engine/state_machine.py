"""
Per-call lifecycle state machine.

The transition table is pure data (TRANSITIONS / transition()) so it can be checked
exhaustively. CallStateMachine applies it to one Call: it is the only writer of
Call.state and Call.outcome, opens and closes the AI session on entering and
leaving ai-active, hands failures to the fallback controller and fires the outcome
dispatcher exactly once, on the transition into ended.

    ringing -> answered -> ai-active -> {completed, voicemail-fallback} -> ended
    ringing -> no-answer -> ended
    ringing | answered -> error -> ended

Inputs that the current state does not permit raise InvalidTransitionError, which
the call worker logs and discards.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from receptionist.config.constants import LOGGER_NAME
from receptionist.config.settings import Settings
from receptionist.exceptions import InvalidTransitionError, SessionUnavailable, TransportError
from receptionist.models.call import Call, CallOutcome, CallState, utc_now
from receptionist.models.call_registry import CallRegistry
from receptionist.models.events import CallEvent, CallInput, InputType

logger = logging.getLogger(LOGGER_NAME)

NON_TERMINAL_STATES = [state for state in CallState if state != CallState.ENDED]

# input type -> {from state: to state}; missing entries are invalid transitions
TRANSITIONS: Dict[InputType, Dict[CallState, CallState]] = {
    InputType.INITIATED: {},
    InputType.ANSWERED: {CallState.RINGING: CallState.ANSWERED},
    InputType.AI_SESSION_READY: {CallState.ANSWERED: CallState.AI_ACTIVE},
    InputType.AI_SESSION_FAILED: {
        CallState.ANSWERED: CallState.VOICEMAIL_FALLBACK,
        CallState.AI_ACTIVE: CallState.VOICEMAIL_FALLBACK,
    },
    InputType.AI_SESSION_COMPLETED: {CallState.AI_ACTIVE: CallState.COMPLETED},
    InputType.HANGUP: {state: CallState.ENDED for state in NON_TERMINAL_STATES},
    InputType.RECORDING_READY: {CallState.ENDED: CallState.ENDED},
    InputType.TIMEOUT: {CallState.RINGING: CallState.NO_ANSWER},
    InputType.ERROR: {
        CallState.RINGING: CallState.ERROR,
        CallState.ANSWERED: CallState.ERROR,
    },
    InputType.DTMF: {CallState.AI_ACTIVE: CallState.AI_ACTIVE},
    InputType.MEDIA_ATTACHED: {
        CallState.RINGING: CallState.RINGING,
        CallState.ANSWERED: CallState.ANSWERED,
        CallState.AI_ACTIVE: CallState.AI_ACTIVE,
    },
    InputType.BOOKING_CONFIRMED: {
        CallState.ANSWERED: CallState.ANSWERED,
        CallState.AI_ACTIVE: CallState.AI_ACTIVE,
        CallState.COMPLETED: CallState.COMPLETED,
        CallState.VOICEMAIL_FALLBACK: CallState.VOICEMAIL_FALLBACK,
    },
}

# Outcome recorded when a hangup ends the call from a given state
HANGUP_OUTCOMES: Dict[CallState, CallOutcome] = {
    CallState.RINGING: CallOutcome.CALLER_HANGUP,
    CallState.ANSWERED: CallOutcome.CALLER_HANGUP,
    CallState.AI_ACTIVE: CallOutcome.ANSWERED_BY_AI,
    CallState.COMPLETED: CallOutcome.ANSWERED_BY_AI,
    CallState.VOICEMAIL_FALLBACK: CallOutcome.VOICEMAIL_FALLBACK,
    CallState.NO_ANSWER: CallOutcome.NO_ANSWER,
    CallState.ERROR: CallOutcome.ERROR,
}

INBOUND_DIRECTIONS = (None, "incoming", "inbound")


def transition(state: Optional[CallState], input_type: InputType) -> Optional[CallState]:
    """
    Look up the target state for an input.

    Returns:
        The next state, or None if the input is not valid from state
    """
    if state is None:
        if input_type in (InputType.INITIATED, InputType.ANSWERED):
            return CallState.RINGING
        return None
    return TRANSITIONS.get(input_type, {}).get(state)


@dataclass
class EngineContext:
    """Collaborators shared by every call's state machine."""

    settings: Settings
    registry: CallRegistry
    broker: Any
    fallback: Any
    dispatcher: Any
    telephony: Any
    tenant_service: Any
    submit: Callable[[CallInput], bool]
    bridge_factory: Callable[..., Any]


class CallStateMachine:
    """Lifecycle controller for one call. Driven only by that call's worker."""

    def __init__(self, call_id: str, context: EngineContext,
                 hangup_pending: Callable[[], bool] = lambda: False):
        self.call_id = call_id
        self.ctx = context
        self.hangup_pending = hangup_pending
        self.call: Optional[Call] = self.ctx.registry.get(call_id)
        self.media_leg = None
        self.bridge = None
        self._no_answer_timer: Optional[asyncio.TimerHandle] = None
        self._handlers = {
            InputType.ANSWERED: self._on_answered,
            InputType.AI_SESSION_READY: self._on_session_ready,
            InputType.AI_SESSION_FAILED: self._on_session_failed,
            InputType.AI_SESSION_COMPLETED: self._on_session_completed,
            InputType.HANGUP: self._on_hangup,
            InputType.RECORDING_READY: self._on_recording_ready,
            InputType.TIMEOUT: self._on_timeout,
            InputType.ERROR: self._on_error,
            InputType.DTMF: self._on_dtmf,
            InputType.MEDIA_ATTACHED: self._on_media_attached,
            InputType.BOOKING_CONFIRMED: self._on_booking_confirmed,
        }

    @property
    def state(self) -> Optional[CallState]:
        return self.call.state if self.call else None

    @property
    def ended(self) -> bool:
        return self.call is not None and self.call.is_terminal

    async def handle(self, call_input: CallInput) -> List[CallInput]:
        """
        Apply one input.

        Returns:
            Follow-up inputs the worker must process before anything else queued

        Raises:
            InvalidTransitionError: if the input is not valid in the current state
        """
        input_type = call_input.type
        if self.call is None and input_type in (InputType.INITIATED, InputType.ANSWERED):
            await self._create(call_input.event, arm_ringing=input_type == InputType.INITIATED)
            if input_type == InputType.INITIATED:
                return []

        target = transition(self.state, input_type)
        if target is None:
            if input_type == InputType.MEDIA_ATTACHED and call_input.payload is not None:
                await call_input.payload.close()
            raise InvalidTransitionError(self.call_id, self.state, input_type)

        logger.debug(f"Call {self.call_id}: {input_type.value} in state {self.state.value}")
        return await self._handlers[input_type](call_input) or []

    def recover(self, call_input: CallInput, error: Exception) -> List[CallInput]:
        """Turn an unexpected error into a fallback input while the caller is connected."""
        if call_input.type == InputType.AI_SESSION_FAILED:
            return []
        if self.state in (CallState.ANSWERED, CallState.AI_ACTIVE):
            return [CallInput.internal(InputType.AI_SESSION_FAILED, self.call_id,
                                       reason=f"internal error: {error}")]
        return []

    # Creation and ringing

    async def _create(self, event: Optional[CallEvent], arm_ringing: bool) -> None:
        attributes = {}
        if event is not None:
            attributes = {
                "from_number": event.from_number,
                "to_number": event.to_number,
                "direction": event.direction,
            }
        tenant_id = None
        if event is not None and event.to_number:
            tenant_id = await self.ctx.tenant_service.resolve_tenant(event.to_number)
        tenant_id = tenant_id or self.ctx.settings.default_tenant_id
        if tenant_id is None:
            logger.warning(f"No tenant for call {self.call_id} to {attributes.get('to_number')}")

        self.call, created = self.ctx.registry.get_or_create(self.call_id, tenant_id, **attributes)
        if not created or not arm_ringing:
            return

        self._arm_no_answer_timer()
        if self.ctx.settings.auto_answer and self.call.direction in INBOUND_DIRECTIONS:
            try:
                await self.ctx.telephony.answer(self.call_id, self.ctx.settings.media_stream_url)
            except TransportError as e:
                logger.error(f"Auto-answer failed for call {self.call_id}: {e}")

    def _arm_no_answer_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._no_answer_timer = loop.call_later(
            self.ctx.settings.no_answer_timeout,
            self.ctx.submit,
            CallInput.internal(InputType.TIMEOUT, self.call_id, reason="no answer"),
        )

    def _cancel_no_answer_timer(self) -> None:
        if self._no_answer_timer is not None:
            self._no_answer_timer.cancel()
            self._no_answer_timer = None

    def _set_state(self, state: CallState) -> None:
        previous = self.call.state
        self.call.state = state
        self.ctx.registry.save(self.call)
        logger.info(f"Call {self.call_id}: {previous.value} -> {state.value}")

    # Transitions

    async def _on_answered(self, call_input: CallInput) -> List[CallInput]:
        self._cancel_no_answer_timer()
        self.call.answered_at = utc_now()
        self._set_state(CallState.ANSWERED)

        try:
            await self.ctx.broker.open(self.call)
        except SessionUnavailable as e:
            return [CallInput.internal(InputType.AI_SESSION_FAILED, self.call_id, reason=str(e))]

        if self.hangup_pending():
            logger.info(f"Hangup queued for call {self.call_id}; discarding new AI session")
            await self.ctx.broker.close(self.call_id, reason="caller hung up")
            return []
        return [CallInput.internal(InputType.AI_SESSION_READY, self.call_id)]

    async def _on_session_ready(self, call_input: CallInput) -> None:
        self._set_state(CallState.AI_ACTIVE)
        self._start_bridge()

    async def _on_session_failed(self, call_input: CallInput) -> None:
        if self.hangup_pending():
            logger.info(f"Hangup queued for call {self.call_id}; fallback not started")
            return
        reason = call_input.reason or "AI session failed"
        await self._teardown_session(reason)
        self.call.failure_reason = reason
        self._set_state(CallState.VOICEMAIL_FALLBACK)
        await self._close_media_leg()
        await self.ctx.fallback.engage(self.call, reason)

    async def _on_session_completed(self, call_input: CallInput) -> None:
        await self._teardown_session("conversation completed")
        self._set_state(CallState.COMPLETED)
        try:
            await self.ctx.telephony.hangup(self.call_id)
        except TransportError as e:
            logger.warning(f"Could not hang up completed call {self.call_id}: {e}")

    async def _on_hangup(self, call_input: CallInput) -> None:
        outcome = HANGUP_OUTCOMES[self.call.state]
        if self.call.state == CallState.AI_ACTIVE:
            await self._teardown_session("caller hung up")
        await self._end(outcome)

    async def _on_timeout(self, call_input: CallInput) -> None:
        self._no_answer_timer = None
        self._set_state(CallState.NO_ANSWER)
        try:
            await self.ctx.telephony.hangup(self.call_id)
        except TransportError as e:
            logger.warning(f"Could not hang up unanswered call {self.call_id}: {e}")
        await self._end(CallOutcome.NO_ANSWER)

    async def _on_error(self, call_input: CallInput) -> None:
        event = call_input.event
        detail = None
        if event is not None:
            detail = event.raw_payload.get("error") or event.raw_payload.get("reason") or event.state
        self.call.failure_reason = str(detail or "provider reported an error")
        self._set_state(CallState.ERROR)
        await self._end(CallOutcome.ERROR)

    async def _on_recording_ready(self, call_input: CallInput) -> None:
        url = call_input.event.recording_url if call_input.event else call_input.payload
        if not url:
            logger.warning(f"Recording event for call {self.call_id} carried no URL")
            return
        self.call.recording_url = url
        self.ctx.registry.save(self.call)
        logger.info(f"Recording attached to call {self.call_id}")
        self.ctx.dispatcher.attach_recording(self.call_id, url)

    async def _on_dtmf(self, call_input: CallInput) -> List[CallInput]:
        digit = call_input.event.digit if call_input.event else call_input.payload
        if not digit:
            return []
        try:
            await self.ctx.broker.send_text(self.call_id, f"Caller pressed {digit}")
        except TransportError as e:
            return [CallInput.internal(InputType.AI_SESSION_FAILED, self.call_id, reason=str(e))]
        return []

    async def _on_media_attached(self, call_input: CallInput) -> None:
        leg = call_input.payload
        if self.media_leg is not None and self.media_leg is not leg:
            await self._close_media_leg()
        self.media_leg = leg
        logger.info(f"Media stream attached to call {self.call_id}")
        if self.call.state == CallState.AI_ACTIVE:
            self._start_bridge()

    async def _on_booking_confirmed(self, call_input: CallInput) -> None:
        if not self.call.appointment_booked:
            self.call.appointment_booked = True
            self.ctx.registry.save(self.call)
            logger.info(f"Appointment booked on call {self.call_id}")

    async def _end(self, outcome: CallOutcome) -> None:
        self._cancel_no_answer_timer()
        await self._close_media_leg()
        self.call.ended_at = utc_now()
        self.call.set_outcome(outcome)
        self._set_state(CallState.ENDED)
        self.ctx.dispatcher.dispatch(self.call)

    # Session and bridge plumbing

    def _start_bridge(self) -> None:
        if self.bridge is not None or self.media_leg is None:
            return
        session = self.ctx.broker.get(self.call_id)
        if session is None:
            logger.warning(f"No AI session to bridge for call {self.call_id}")
            return
        self.bridge = self.ctx.bridge_factory(self.call, self.media_leg, session.transport,
                                              self.ctx.submit)
        self.bridge.start()
        logger.info(f"Audio bridge started for call {self.call_id}")

    async def _stop_bridge(self) -> None:
        if self.bridge is not None:
            bridge, self.bridge = self.bridge, None
            await bridge.stop()

    async def _teardown_session(self, reason: str) -> None:
        await self._stop_bridge()
        await self.ctx.broker.close(self.call_id, reason=reason)

    async def _close_media_leg(self) -> None:
        await self._stop_bridge()
        if self.media_leg is not None:
            leg, self.media_leg = self.media_leg, None
            await leg.close()
