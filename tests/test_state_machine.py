"""
Tests for the call state machine transition table and single-call behaviour.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_event
from receptionist.engine.state_machine import (
    HANGUP_OUTCOMES,
    CallStateMachine,
    EngineContext,
    transition,
)
from receptionist.exceptions import InvalidTransitionError
from receptionist.models.call import CallOutcome, CallState
from receptionist.models.call_registry import CallRegistry
from receptionist.models.events import CallInput, InputType

S = CallState
IT = InputType

# Every valid (input, from-state) pair and its target; everything else is invalid
VALID = {
    (IT.ANSWERED, S.RINGING): S.ANSWERED,
    (IT.AI_SESSION_READY, S.ANSWERED): S.AI_ACTIVE,
    (IT.AI_SESSION_FAILED, S.ANSWERED): S.VOICEMAIL_FALLBACK,
    (IT.AI_SESSION_FAILED, S.AI_ACTIVE): S.VOICEMAIL_FALLBACK,
    (IT.AI_SESSION_COMPLETED, S.AI_ACTIVE): S.COMPLETED,
    (IT.RECORDING_READY, S.ENDED): S.ENDED,
    (IT.TIMEOUT, S.RINGING): S.NO_ANSWER,
    (IT.ERROR, S.RINGING): S.ERROR,
    (IT.ERROR, S.ANSWERED): S.ERROR,
    (IT.DTMF, S.AI_ACTIVE): S.AI_ACTIVE,
    (IT.MEDIA_ATTACHED, S.RINGING): S.RINGING,
    (IT.MEDIA_ATTACHED, S.ANSWERED): S.ANSWERED,
    (IT.MEDIA_ATTACHED, S.AI_ACTIVE): S.AI_ACTIVE,
    (IT.BOOKING_CONFIRMED, S.ANSWERED): S.ANSWERED,
    (IT.BOOKING_CONFIRMED, S.AI_ACTIVE): S.AI_ACTIVE,
    (IT.BOOKING_CONFIRMED, S.COMPLETED): S.COMPLETED,
    (IT.BOOKING_CONFIRMED, S.VOICEMAIL_FALLBACK): S.VOICEMAIL_FALLBACK,
}
VALID.update({(IT.HANGUP, state): S.ENDED for state in S if state != S.ENDED})


@pytest.mark.parametrize("state", list(S))
@pytest.mark.parametrize("input_type", list(IT))
def test_transition_table_is_exhaustive(state, input_type):
    assert transition(state, input_type) == VALID.get((input_type, state))


def test_first_initiated_or_answered_creates_ringing_call():
    assert transition(None, IT.INITIATED) == S.RINGING
    assert transition(None, IT.ANSWERED) == S.RINGING
    assert transition(None, IT.HANGUP) is None


def test_duplicate_initiated_is_not_a_transition():
    for state in S:
        assert transition(state, IT.INITIATED) is None


def test_hangup_outcome_derivation():
    assert HANGUP_OUTCOMES[S.RINGING] == CallOutcome.CALLER_HANGUP
    assert HANGUP_OUTCOMES[S.ANSWERED] == CallOutcome.CALLER_HANGUP
    assert HANGUP_OUTCOMES[S.AI_ACTIVE] == CallOutcome.ANSWERED_BY_AI
    assert HANGUP_OUTCOMES[S.COMPLETED] == CallOutcome.ANSWERED_BY_AI
    assert HANGUP_OUTCOMES[S.VOICEMAIL_FALLBACK] == CallOutcome.VOICEMAIL_FALLBACK


@pytest.fixture
def context(settings, telephony, tenant_service):
    broker = MagicMock()
    broker.open = AsyncMock()
    broker.close = AsyncMock(return_value=True)
    broker.send_text = AsyncMock()
    return EngineContext(
        settings=settings,
        registry=CallRegistry(),
        broker=broker,
        fallback=MagicMock(engage=AsyncMock()),
        dispatcher=MagicMock(),
        telephony=telephony,
        tenant_service=tenant_service,
        submit=MagicMock(return_value=True),
        bridge_factory=MagicMock(),
    )


def machine_in_state(context, state, hangup_pending=False):
    call, _ = context.registry.get_or_create("call-1", tenant_id="biz-1")
    call.state = state
    return CallStateMachine("call-1", context, hangup_pending=lambda: hangup_pending)


@pytest.mark.asyncio
async def test_invalid_input_leaves_state_unchanged(context):
    machine = machine_in_state(context, S.RINGING)

    with pytest.raises(InvalidTransitionError):
        await machine.handle(CallInput.internal(IT.AI_SESSION_READY, "call-1"))

    assert machine.call.state == S.RINGING
    context.broker.open.assert_not_awaited()


@pytest.mark.asyncio
async def test_session_failure_ignored_when_hangup_pending(context):
    machine = machine_in_state(context, S.AI_ACTIVE, hangup_pending=True)

    await machine.handle(CallInput.internal(IT.AI_SESSION_FAILED, "call-1", reason="lost"))

    assert machine.call.state == S.AI_ACTIVE
    context.fallback.engage.assert_not_awaited()


@pytest.mark.asyncio
async def test_session_failure_engages_fallback(context):
    machine = machine_in_state(context, S.AI_ACTIVE)

    await machine.handle(CallInput.internal(IT.AI_SESSION_FAILED, "call-1", reason="lost"))

    assert machine.call.state == S.VOICEMAIL_FALLBACK
    assert machine.call.failure_reason == "lost"
    context.broker.close.assert_awaited_once()
    context.fallback.engage.assert_awaited_once_with(machine.call, "lost")


@pytest.mark.asyncio
async def test_opened_session_is_closed_when_hangup_pending(context):
    machine = machine_in_state(context, S.RINGING, hangup_pending=True)

    follow_ups = await machine.handle(CallInput.from_event(make_event("call-1", "answered")))

    assert follow_ups == []
    assert machine.call.state == S.ANSWERED
    context.broker.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_answered_returns_session_ready_follow_up(context):
    machine = machine_in_state(context, S.RINGING)

    follow_ups = await machine.handle(CallInput.from_event(make_event("call-1", "answered")))

    assert [f.type for f in follow_ups] == [IT.AI_SESSION_READY]
    assert machine.call.answered_at is not None


@pytest.mark.asyncio
async def test_outcome_is_set_once_and_dispatched_once(context):
    machine = machine_in_state(context, S.RINGING)

    await machine.handle(CallInput.from_event(make_event("call-1", "hangup")))
    with pytest.raises(InvalidTransitionError):
        await machine.handle(CallInput.from_event(make_event("call-1", "hangup", "evt-2")))

    assert machine.call.outcome == CallOutcome.CALLER_HANGUP
    assert machine.call.ended_at is not None
    context.dispatcher.dispatch.assert_called_once_with(machine.call)


@pytest.mark.asyncio
async def test_provider_error_ends_call_with_error_outcome(context):
    machine = machine_in_state(context, S.ANSWERED)

    await machine.handle(CallInput.from_event(
        make_event("call-1", "error", raw_payload={"error": "media failure"})
    ))

    assert machine.call.state == S.ENDED
    assert machine.call.outcome == CallOutcome.ERROR
    assert machine.call.failure_reason == "media failure"


def test_recover_falls_back_only_while_caller_connected(context):
    machine = machine_in_state(context, S.AI_ACTIVE)
    dtmf = CallInput.internal(IT.DTMF, "call-1")

    [follow_up] = machine.recover(dtmf, RuntimeError("boom"))
    assert follow_up.type == IT.AI_SESSION_FAILED

    machine.call.state = S.COMPLETED
    assert machine.recover(dtmf, RuntimeError("boom")) == []
