"""
Call-control client for the telephony provider.

Commands are issued against ``/calls/{call_control_id}/actions/{action}``. This
client never depends on the AI backend, which is what lets the voicemail
fallback work during an AI outage.
"""

import logging
from typing import Optional

from receptionist.config.constants import LOGGER_NAME
from receptionist.exceptions import TransportError
from receptionist.services.http_service import HttpService

logger = logging.getLogger(LOGGER_NAME)


class TelephonyClient(HttpService):
    name = "telephony"
    error_class = TransportError

    async def _action(self, call_id: str, action: str, payload: Optional[dict] = None) -> None:
        if not self.configured:
            logger.warning(f"Telephony API not configured; {action} for call {call_id} skipped")
            return
        await self._request("POST", f"/calls/{call_id}/actions/{action}", json=payload or {})
        logger.info(f"Telephony command {action} sent for call {call_id}")

    async def answer(self, call_id: str, stream_url: Optional[str] = None) -> None:
        payload = {}
        if stream_url:
            payload = {"stream_url": stream_url, "stream_track": "inbound_track"}
        await self._action(call_id, "answer", payload)

    async def speak(self, call_id: str, text: str, voice: str = "female",
                    language: str = "en-US") -> None:
        await self._action(call_id, "speak", {"payload": text, "voice": voice, "language": language})

    async def start_recording(self, call_id: str, max_length_secs: int = 300) -> None:
        await self._action(
            call_id,
            "record_start",
            {"format": "mp3", "channels": "single", "play_beep": True,
             "max_length": max_length_secs},
        )

    async def hangup(self, call_id: str) -> None:
        await self._action(call_id, "hangup")
