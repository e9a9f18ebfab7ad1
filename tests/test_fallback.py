"""
Tests for the voicemail fallback controller.
"""

from unittest.mock import MagicMock

import pytest

from receptionist.engine.fallback import SEVERITY_CRITICAL, SEVERITY_HIGH, FallbackController
from receptionist.exceptions import TransportError
from receptionist.models.call import Call, CallState

PROMPT = "Please leave a message after the tone."


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def controller(telephony, dispatcher):
    return FallbackController(telephony, dispatcher, PROMPT)


@pytest.fixture
def call():
    return Call(call_id="call-1", tenant_id="biz-1", from_number="+15550100",
                state=CallState.VOICEMAIL_FALLBACK)


@pytest.mark.asyncio
async def test_prompt_recording_and_notification(controller, telephony, dispatcher, call):
    result = await controller.engage(call, "AI backend not ready")

    telephony.speak.assert_awaited_once_with("call-1", PROMPT, voice="female", language="en-US")
    telephony.start_recording.assert_awaited_once_with("call-1")
    assert result.prompt_played and result.recording_started
    assert result.severity == SEVERITY_HIGH

    tenant_id, call_id, severity, message = dispatcher.notify.call_args[0]
    assert (tenant_id, call_id, severity) == ("biz-1", "call-1", SEVERITY_HIGH)
    assert "+15550100" in message
    assert "AI backend not ready" in message


@pytest.mark.asyncio
async def test_failed_prompt_escalates_to_critical(controller, telephony, dispatcher, call):
    telephony.speak.side_effect = TransportError("call already gone")

    result = await controller.engage(call, "session lost")

    assert not result.prompt_played
    assert result.recording_started
    assert result.severity == SEVERITY_CRITICAL
    telephony.start_recording.assert_awaited_once()
    assert dispatcher.notify.call_args[0][2] == SEVERITY_CRITICAL


@pytest.mark.asyncio
async def test_failed_recording_still_notifies(controller, telephony, dispatcher, call):
    telephony.start_recording.side_effect = TransportError("recording rejected")

    result = await controller.engage(call)

    assert result.severity == SEVERITY_CRITICAL
    dispatcher.notify.assert_called_once()
