"""
Tests for the telephony media stream leg.
"""

import asyncio
import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect

from receptionist.exceptions import TransportError
from receptionist.handlers.media_handlers import TelephonyMediaLeg, handle_media_stream


def frame(event, **fields):
    return json.dumps({"event": event, **fields})


def start_frame(call_id="v3:call-1"):
    return frame("start", stream_id="stream-1",
                 start={"call_control_id": call_id, "media_format": {"encoding": "PCMU"}})


def media_frame(chunk: bytes):
    return frame("media", media={"payload": base64.b64encode(chunk).decode("utf-8")})


def make_websocket(*frames):
    websocket = MagicMock()
    websocket.receive_text = AsyncMock(side_effect=[*frames, WebSocketDisconnect()])
    websocket.send_text = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


@pytest.mark.asyncio
async def test_start_frame_identifies_call():
    leg = TelephonyMediaLeg(make_websocket(frame("connected"), start_frame()))

    assert await leg.wait_for_start() == "v3:call-1"
    assert leg.stream_id == "stream-1"


@pytest.mark.asyncio
async def test_stream_closed_before_start():
    leg = TelephonyMediaLeg(make_websocket(frame("connected")))

    assert await leg.wait_for_start() is None
    assert leg.closed


@pytest.mark.asyncio
async def test_caller_audio_is_decoded_until_stop():
    leg = TelephonyMediaLeg(make_websocket(
        start_frame(), media_frame(b"\x7f" * 160), "not json",
        frame("media", media={"payload": "!!!"}), media_frame(b"\x00" * 160), frame("stop"),
    ))
    await leg.wait_for_start()

    assert await leg.receive_audio() == b"\x7f" * 160
    assert await leg.receive_audio() == b"\x00" * 160
    assert await leg.receive_audio() is None
    assert leg.closed


@pytest.mark.asyncio
async def test_outbound_audio_and_clear_frames():
    websocket = make_websocket()
    leg = TelephonyMediaLeg(websocket)

    await leg.send_audio(b"\x01\x02")
    await leg.clear()

    sent = [json.loads(call.args[0]) for call in websocket.send_text.await_args_list]
    assert sent[0] == {"event": "media", "media": {"payload": "AQI=", "track": None}}
    assert sent[1] == {"event": "clear"}


@pytest.mark.asyncio
async def test_send_after_disconnect_marks_leg_closed():
    websocket = make_websocket()
    websocket.send_text.side_effect = WebSocketDisconnect()
    leg = TelephonyMediaLeg(websocket)

    await leg.send_audio(b"\x01")
    await leg.send_audio(b"\x02")

    assert leg.closed
    assert websocket.send_text.await_count == 1


@pytest.mark.asyncio
async def test_socket_error_on_send_raises_transport_error():
    websocket = make_websocket()
    websocket.send_text.side_effect = ConnectionResetError("reset by peer")
    leg = TelephonyMediaLeg(websocket)

    with pytest.raises(TransportError):
        await leg.send_audio(b"\x01")


@pytest.mark.asyncio
async def test_close_is_idempotent():
    websocket = make_websocket()
    leg = TelephonyMediaLeg(websocket)

    await leg.close()
    await leg.close()

    websocket.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_handler_attaches_leg_and_waits_for_close():
    websocket = make_websocket(start_frame())
    attached = []

    def attach(call_id, leg):
        attached.append((call_id, leg))
        return True

    handler = asyncio.create_task(handle_media_stream(websocket, attach, start_timeout=1))
    await asyncio.sleep(0.01)

    assert attached[0][0] == "v3:call-1"
    assert not handler.done()

    await attached[0][1].close()
    await asyncio.wait_for(handler, timeout=1)


@pytest.mark.asyncio
async def test_handler_closes_stream_for_unknown_call():
    websocket = make_websocket(start_frame("v3:unknown"))

    await asyncio.wait_for(handle_media_stream(websocket, lambda call_id, leg: False), timeout=1)

    websocket.close.assert_awaited_once()
