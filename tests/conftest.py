import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from receptionist.config.settings import Settings
from receptionist.models.events import CallEvent, CallEventType


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


@pytest.fixture
def settings():
    """Settings tuned for fast tests."""
    return Settings(
        webhook_secret="test-secret",
        no_answer_timeout=30.0,
        eviction_grace=60.0,
        connect_timeout=0.2,
        heartbeat_interval=0.01,
        silence_threshold=20.0,
        force_close_threshold=10.0,
        relay_timeout=0.5,
        dispatch_base_delay=0.0,
        dispatch_max_delay=0.0,
        shutdown_drain=1.0,
        media_stream_url="wss://engine.example.com/media",
        default_tenant_id="biz-default",
    )


def make_event(call_id, event_type, event_id=None, **attributes):
    """Build a CallEvent the way the webhook ingress would."""
    if isinstance(event_type, str):
        event_type = CallEventType(event_type)
    return CallEvent(
        event_id=event_id or f"{call_id}-{event_type.value}",
        call_id=call_id,
        event_type=event_type,
        from_number=attributes.pop("from_number", "+15550100"),
        to_number=attributes.pop("to_number", "+15550199"),
        direction=attributes.pop("direction", "incoming"),
        **attributes,
    )


class FakeSessionTransport:
    """Stand-in for RealtimeSessionClient used by broker and bridge tests."""

    def __init__(self):
        self.inbound = asyncio.Queue()
        self.sent_audio = []
        self.sent_text = []
        self.session_id = "backend-session-1"
        self.last_activity = 0.0
        self.connected = True
        self.close = AsyncMock(side_effect=self._close)
        self.send_delay = 0.0

    async def _close(self):
        self.connected = False

    async def connect(self, timeout):
        pass

    async def configure(self, message):
        self.configured_with = message

    async def wait_ready(self, timeout):
        pass

    async def send_audio(self, chunk):
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        self.sent_audio.append(chunk)

    async def send_text(self, text):
        self.sent_text.append(text)

    async def receive(self):
        return await self.inbound.get()


class FakeCallerLeg:
    """Stand-in for TelephonyMediaLeg: queued inbound chunks, recorded outbound audio."""

    def __init__(self):
        self.inbound = asyncio.Queue()
        self.sent = []
        self.cleared = 0
        self.closed = False

    async def receive_audio(self):
        return await self.inbound.get()

    async def send_audio(self, chunk):
        self.sent.append(chunk)

    async def clear(self):
        self.cleared += 1

    async def close(self):
        self.closed = True


@pytest.fixture
def telephony():
    return AsyncMock()


@pytest.fixture
def tenant_service():
    service = AsyncMock()
    service.resolve_tenant.return_value = "biz-1"
    return service


@pytest.fixture
def collaborators():
    """AsyncMock call log, billing and notification services."""
    return MagicMock(call_log=AsyncMock(), billing=AsyncMock(), notifications=AsyncMock())
