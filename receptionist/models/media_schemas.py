"""
Pydantic models for the telephony provider's media stream WebSocket.

The provider connects to the media endpoint once per call and sends JSON text
frames: connected, start (identifying the call), media (base64 audio) and stop.
Audio going back to the caller is sent as media frames; clear flushes any audio
the provider has buffered (barge-in).
"""

import base64
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MediaBaseMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    stream_id: Optional[str] = None


class MediaConnectedMessage(MediaBaseMessage):
    event: Literal["connected"]


class MediaStartInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    call_control_id: str = Field(..., min_length=1)
    media_format: Optional[dict] = None


class MediaStartMessage(MediaBaseMessage):
    event: Literal["start"]
    start: MediaStartInfo


class MediaPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    payload: str
    track: Optional[str] = None

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is valid base64."""
        try:
            if v:
                base64.b64decode(v, validate=True)
            else:
                raise ValueError("Media payload cannot be empty")
        except Exception:
            raise ValueError("Invalid base64 encoded audio data")
        return v


class MediaMessage(MediaBaseMessage):
    event: Literal["media"]
    media: MediaPayload

    def audio_bytes(self) -> bytes:
        return base64.b64decode(self.media.payload)


class MediaStopMessage(MediaBaseMessage):
    event: Literal["stop"]


class OutboundMediaMessage(BaseModel):
    """Audio sent back to the caller."""

    event: Literal["media"] = "media"
    media: MediaPayload

    @classmethod
    def from_bytes(cls, audio: bytes) -> "OutboundMediaMessage":
        return cls(media=MediaPayload(payload=base64.b64encode(audio).decode("utf-8")))


class ClearMessage(BaseModel):
    event: Literal["clear"] = "clear"
