"""
Bot module for the live AI conversation side of a call.

Key components:
- RealtimeSessionClient: WebSocket client for the AI conversation backend, with a
  bounded receive queue, send deadlines and an inbound activity watermark.
- SessionBroker: Opens, supervises (degraded / force-closed on silence) and
  idempotently closes the one Session a call may have.
- AudioBridge: Four-pump relay between the caller's media leg and the AI session
  with bounded frame queues and a single transcript appender.

Usage examples:
```python
from receptionist.bot import AudioBridge, SessionBroker

broker = SessionBroker(settings, tenant_service, failure_sink=call_manager.submit)
session = await broker.open(call)  # raises SessionUnavailable on timeout/error

bridge = AudioBridge(call, media_leg, session.transport, call_manager.submit)
bridge.start()
...
await bridge.stop()
await broker.close(call.call_id)
```
"""

from receptionist.bot.audio_bridge import AudioBridge, BridgeResult, FrameQueue, TranscriptAppender
from receptionist.bot.realtime_api import RealtimeSessionClient
from receptionist.bot.session_broker import Session, SessionBroker, SessionStatus

__all__ = [
    "AudioBridge",
    "BridgeResult",
    "FrameQueue",
    "RealtimeSessionClient",
    "Session",
    "SessionBroker",
    "SessionStatus",
    "TranscriptAppender",
]
