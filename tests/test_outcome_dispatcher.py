"""
Tests for the outcome dispatcher: exactly-once publishing, retry and reconciliation.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from receptionist.engine.outcome_dispatcher import OutcomeDispatcher
from receptionist.exceptions import DispatchError
from receptionist.models.event_log import ProcessedEventLog
from receptionist.models.call import Call, CallOutcome, CallState, utc_now


def ended_call(call_id="call-1", outcome=CallOutcome.ANSWERED_BY_AI, **fields):
    call = Call(call_id=call_id, tenant_id="biz-1", from_number="+15550100",
                state=CallState.ENDED, ended_at=utc_now(), **fields)
    call.set_outcome(outcome)
    return call


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def dispatcher(collaborators, sleep):
    return OutcomeDispatcher(
        collaborators.call_log, collaborators.billing, collaborators.notifications,
        max_attempts=3, base_delay=0.5, max_delay=1.5, sleep=sleep,
    )


@pytest.mark.asyncio
async def test_call_record_is_published_once(dispatcher, collaborators):
    call = ended_call()

    assert dispatcher.dispatch(call) is True
    assert dispatcher.dispatch(call) is False
    await dispatcher.flush()

    collaborators.call_log.record_call.assert_awaited_once()
    record = collaborators.call_log.record_call.await_args[0][0]
    assert record["call_id"] == "call-1"
    assert record["outcome"] == "answered-by-ai"
    collaborators.billing.report_billable_event.assert_not_awaited()
    collaborators.notifications.notify.assert_not_awaited()


@pytest.mark.asyncio
async def test_booked_appointment_triggers_billing(dispatcher, collaborators):
    dispatcher.dispatch(ended_call(appointment_booked=True))
    await dispatcher.flush()

    collaborators.billing.report_billable_event.assert_awaited_once_with(
        "biz-1", "call-1", "appointment_booked"
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome,severity", [
    (CallOutcome.VOICEMAIL_FALLBACK, "normal"),
    (CallOutcome.ERROR, "high"),
])
async def test_notifying_outcomes(dispatcher, collaborators, outcome, severity):
    dispatcher.dispatch(ended_call(outcome=outcome, failure_reason="backend down"))
    await dispatcher.flush()

    tenant_id, sent_severity, message = collaborators.notifications.notify.await_args[0]
    assert tenant_id == "biz-1"
    assert sent_severity == severity
    assert "backend down" in message


@pytest.mark.asyncio
async def test_failed_publish_is_retried_with_backoff(dispatcher, collaborators, sleep):
    collaborators.call_log.record_call.side_effect = [
        DispatchError("call log unavailable"),
        DispatchError("call log unavailable"),
        None,
    ]

    dispatcher.dispatch(ended_call())
    await dispatcher.flush()

    assert collaborators.call_log.record_call.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]
    assert dispatcher.pending_count == 0


def test_backoff_is_capped(dispatcher):
    assert [dispatcher.backoff(n) for n in range(1, 5)] == [0.5, 1.0, 1.5, 1.5]


@pytest.mark.asyncio
async def test_exhausted_jobs_are_parked_for_reconciliation(dispatcher, collaborators):
    collaborators.call_log.record_call.side_effect = DispatchError("down")

    dispatcher.dispatch(ended_call())
    await dispatcher.flush()

    assert collaborators.call_log.record_call.await_count == 3
    assert dispatcher.pending_count == 1
    assert dispatcher.reconciliation[0].kind == "record_call"
    assert dispatcher.has_dispatched("call-1")

    collaborators.call_log.record_call.side_effect = None
    assert await dispatcher.reconcile() == 1
    assert dispatcher.pending_count == 0


@pytest.mark.asyncio
async def test_recording_attachment_and_notify_jobs(dispatcher, collaborators):
    dispatcher.attach_recording("call-1", "https://recordings.example.com/1.mp3")
    dispatcher.notify("biz-1", "call-1", "critical", "fallback failed")
    await dispatcher.flush()

    collaborators.call_log.attach_recording.assert_awaited_once_with(
        "call-1", "https://recordings.example.com/1.mp3"
    )
    collaborators.notifications.notify.assert_awaited_once_with(
        "biz-1", "critical", "fallback failed"
    )


@pytest.mark.asyncio
async def test_unexpected_collaborator_error_is_retried_and_parked(dispatcher, collaborators):
    collaborators.call_log.record_call.side_effect = httpx.InvalidURL("Invalid URL 'http://'")

    dispatcher.dispatch(ended_call())
    await dispatcher.flush()

    assert collaborators.call_log.record_call.await_count == 3
    assert dispatcher.pending_count == 1
    assert "InvalidURL" in dispatcher.reconciliation[0].last_error


@pytest.mark.asyncio
async def test_reconciliation_queue_drops_oldest_when_full(collaborators, sleep):
    dispatcher = OutcomeDispatcher(
        collaborators.call_log, collaborators.billing, collaborators.notifications,
        max_attempts=1, max_parked=2, sleep=sleep,
    )
    collaborators.call_log.record_call.side_effect = DispatchError("down")

    for call_id in ("call-1", "call-2", "call-3"):
        dispatcher.dispatch(ended_call(call_id))
        await dispatcher.flush()

    assert [job.call_id for job in dispatcher.reconciliation] == ["call-2", "call-3"]


@pytest.mark.asyncio
async def test_dispatched_record_is_bounded(collaborators, sleep):
    now = [0.0]
    dispatched = ProcessedEventLog(retention_seconds=60, max_entries=2, clock=lambda: now[0])
    dispatcher = OutcomeDispatcher(
        collaborators.call_log, collaborators.billing, collaborators.notifications,
        dispatched=dispatched, sleep=sleep,
    )

    for call_id in ("call-1", "call-2", "call-3"):
        dispatcher.dispatch(ended_call(call_id))
    await dispatcher.flush()

    assert len(dispatched) == 2
    assert not dispatcher.has_dispatched("call-1")
    assert dispatcher.has_dispatched("call-3")

    now[0] = 61.0
    assert not dispatcher.has_dispatched("call-3")
    assert len(dispatched) == 0
