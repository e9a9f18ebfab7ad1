"""
Voicemail fallback.

Used when the AI session cannot be opened or is lost. It only talks to the
telephony call-control API and the notification path, never to the AI backend,
so an AI outage still ends with the caller invited to leave a message.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from receptionist.config.constants import LOGGER_NAME
from receptionist.exceptions import TransportError
from receptionist.models.call import Call
from receptionist.services.telephony import TelephonyClient

logger = logging.getLogger(LOGGER_NAME)

SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"


@dataclass
class FallbackResult:
    prompt_played: bool
    recording_started: bool
    severity: str


class FallbackController:
    """Drives a call into the voicemail flow."""

    def __init__(self, telephony: TelephonyClient, dispatcher, prompt: str,
                 voice: str = "female", language: str = "en-US"):
        self.telephony = telephony
        self.dispatcher = dispatcher
        self.prompt = prompt
        self.voice = voice
        self.language = language

    async def engage(self, call: Call, reason: Optional[str] = None) -> FallbackResult:
        """
        Prompt the caller to leave a message, start recording and alert an operator.

        Telephony failures are logged, never raised: the notification is always sent,
        at critical severity when the caller could not be prompted.
        """
        call_id = call.call_id
        logger.warning(f"Voicemail fallback for call {call_id}: {reason}")

        prompt_played = True
        try:
            await self.telephony.speak(call_id, self.prompt, voice=self.voice,
                                       language=self.language)
        except TransportError as e:
            prompt_played = False
            logger.error(f"Could not play voicemail prompt on call {call_id}: {e}")

        recording_started = True
        try:
            await self.telephony.start_recording(call_id)
        except TransportError as e:
            recording_started = False
            logger.error(f"Could not start voicemail recording on call {call_id}: {e}")

        if prompt_played and recording_started:
            severity = SEVERITY_HIGH
            message = (
                f"AI receptionist unavailable for call from {call.from_number or 'unknown'}; "
                f"caller sent to voicemail ({reason or 'session failed'})"
            )
        else:
            # Caller may be hearing silence
            severity = SEVERITY_CRITICAL
            message = (
                f"Call from {call.from_number or 'unknown'} could not be handled: AI unavailable "
                f"and voicemail fallback failed ({reason or 'session failed'})"
            )
        self.dispatcher.notify(call.tenant_id, call_id, severity, message)
        return FallbackResult(prompt_played, recording_started, severity)
