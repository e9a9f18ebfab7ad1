"""
Telephony media stream handling.

The provider opens one WebSocket per answered call and streams the caller's audio
as JSON frames (connected, start, media, stop). TelephonyMediaLeg wraps that socket
as the caller side of the audio bridge; handle_media_stream identifies the call
from the start frame, hands the leg to the call manager and keeps the endpoint
open until the leg is closed by either side.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from receptionist.config.constants import (
    LOGGER_NAME,
    MEDIA_EVENT_CONNECTED,
    MEDIA_EVENT_MEDIA,
    MEDIA_EVENT_START,
    MEDIA_EVENT_STOP,
)
from receptionist.exceptions import TransportError
from receptionist.models.media_schemas import (
    ClearMessage,
    MediaMessage,
    MediaStartMessage,
    OutboundMediaMessage,
)

logger = logging.getLogger(LOGGER_NAME)

START_TIMEOUT = 10.0  # seconds to wait for the start frame


class TelephonyMediaLeg:
    """Caller leg of the audio bridge backed by the provider's media WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.call_id: Optional[str] = None
        self.stream_id: Optional[str] = None
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def _receive_json(self) -> Optional[dict]:
        """Next decoded frame, or None once the socket is gone."""
        while not self.closed:
            try:
                raw = await self.websocket.receive_text()
            except (WebSocketDisconnect, RuntimeError):
                self._closed.set()
                return None
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Received invalid JSON on media stream: {raw[:100]}...")
        return None

    async def wait_for_start(self, timeout: float = START_TIMEOUT) -> Optional[str]:
        """
        Read frames until the start frame identifies the call.

        Returns:
            The call_control_id, or None if the stream closed or timed out first
        """
        try:
            return await asyncio.wait_for(self._read_start(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"No start frame on media stream within {timeout}s")
            return None

    async def _read_start(self) -> Optional[str]:
        while True:
            frame = await self._receive_json()
            if frame is None:
                return None
            event = frame.get("event")
            if event == MEDIA_EVENT_CONNECTED:
                logger.debug("Media stream connected")
                continue
            if event == MEDIA_EVENT_START:
                try:
                    start = MediaStartMessage.model_validate(frame)
                except ValidationError as e:
                    logger.error(f"Invalid start frame on media stream: {e}")
                    return None
                self.call_id = start.start.call_control_id
                self.stream_id = start.stream_id
                logger.info(f"Media stream started for call {self.call_id}")
                return self.call_id
            logger.debug(f"Ignoring media frame before start: {event}")

    async def receive_audio(self) -> Optional[bytes]:
        """Next chunk of caller audio, or None when the stream stops."""
        while True:
            frame = await self._receive_json()
            if frame is None:
                return None
            event = frame.get("event")
            if event == MEDIA_EVENT_MEDIA:
                try:
                    return MediaMessage.model_validate(frame).audio_bytes()
                except ValidationError as e:
                    logger.warning(f"Dropping malformed media frame: {e}")
                    continue
            if event == MEDIA_EVENT_STOP:
                logger.info(f"Media stream stopped for call {self.call_id}")
                self._closed.set()
                return None

    async def _send(self, message) -> None:
        if self.closed:
            return
        try:
            await self.websocket.send_text(message.model_dump_json())
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Media stream for call {self.call_id} gone: {e}")
            self._closed.set()
        except OSError as e:
            raise TransportError(f"Media stream send failed: {e}") from e

    async def send_audio(self, chunk: bytes) -> None:
        await self._send(OutboundMediaMessage.from_bytes(chunk))

    async def clear(self) -> None:
        await self._send(ClearMessage())

    async def close(self) -> None:
        """Close the media socket. Idempotent."""
        if self.closed:
            return
        self._closed.set()
        try:
            await self.websocket.close()
        except RuntimeError as e:
            logger.debug(f"Media stream already closed: {e}")

    async def wait_closed(self) -> None:
        await self._closed.wait()


async def handle_media_stream(websocket: WebSocket,
                              attach: Callable[[str, TelephonyMediaLeg], bool],
                              start_timeout: float = START_TIMEOUT) -> None:
    """
    Serve one provider media stream connection.

    Args:
        websocket: The accepted media WebSocket
        attach: Callback handing the leg to the call manager; returns False for unknown calls
        start_timeout: Seconds to wait for the start frame
    """
    leg = TelephonyMediaLeg(websocket)
    call_id = await leg.wait_for_start(start_timeout)
    if call_id is None:
        await leg.close()
        return

    if not attach(call_id, leg):
        logger.warning(f"Media stream for unknown call {call_id}; closing")
        await leg.close()
        return

    await leg.wait_closed()
    logger.info(f"Media stream handler finished for call {call_id}")
