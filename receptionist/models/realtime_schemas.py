"""
Pydantic models for the AI session transport.

The AI conversation backend is reached over a persistent duplex socket carrying
typed JSON messages. Outbound: session.configure (once), audio.input and
text.input (many). Inbound: session.ready, audio.output.delta, text.output.delta,
input.transcript, function.call, session.error and session.closed.
"""

import base64
import json
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


def _validate_base64(v: str) -> str:
    if not v:
        raise ValueError("Audio payload cannot be empty")
    try:
        base64.b64decode(v, validate=True)
    except Exception:
        raise ValueError("Invalid base64 encoded audio data")
    return v


class AgentConfig(BaseModel):
    """Per-tenant agent configuration supplied by the tenant configuration service."""

    greeting: str = "Thank you for calling. How can I help you today?"
    voice: str = "alloy"
    instructions: str = (
        "You are a professional AI receptionist. Be helpful, friendly and concise."
    )
    business_name: Optional[str] = None
    language: str = "en"


class RealtimeBaseMessage(BaseModel):
    """Base model for AI session messages."""

    type: str


# Outbound messages
class SessionConfigureMessage(RealtimeBaseMessage):
    type: Literal["session.configure"] = "session.configure"
    call_id: str
    instructions: str
    greeting: str
    voice: str
    language: str = "en"
    business_name: Optional[str] = None
    input_audio_format: str = "g711_ulaw"
    output_audio_format: str = "g711_ulaw"

    @classmethod
    def from_agent_config(cls, call_id: str, config: AgentConfig) -> "SessionConfigureMessage":
        return cls(
            call_id=call_id,
            instructions=config.instructions,
            greeting=config.greeting,
            voice=config.voice,
            language=config.language,
            business_name=config.business_name,
        )


class AudioInputMessage(RealtimeBaseMessage):
    type: Literal["audio.input"] = "audio.input"
    audio: str = Field(..., description="Base64-encoded caller audio")

    @field_validator("audio")
    def validate_audio(cls, v):
        """Validate that audio is non-empty base64."""
        return _validate_base64(v)


class TextInputMessage(RealtimeBaseMessage):
    type: Literal["text.input"] = "text.input"
    text: str = Field(..., min_length=1)


# Inbound messages
class SessionReadyMessage(RealtimeBaseMessage):
    type: Literal["session.ready"]
    session_id: Optional[str] = None


class AudioOutputDeltaMessage(RealtimeBaseMessage):
    type: Literal["audio.output.delta"]
    audio: str
    response_id: Optional[str] = None

    @field_validator("audio")
    def validate_audio(cls, v):
        """Validate that audio is non-empty base64."""
        return _validate_base64(v)

    def audio_bytes(self) -> bytes:
        return base64.b64decode(self.audio)


class TextOutputDeltaMessage(RealtimeBaseMessage):
    type: Literal["text.output.delta"]
    delta: str
    response_id: Optional[str] = None
    done: bool = False


class InputTranscriptMessage(RealtimeBaseMessage):
    type: Literal["input.transcript"]
    text: str
    final: bool = True


class FunctionCallMessage(RealtimeBaseMessage):
    type: Literal["function.call"]
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", mode="before")
    def parse_arguments(cls, v):
        """Accept arguments either as an object or as a JSON string."""
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v or {}


class SessionErrorMessage(RealtimeBaseMessage):
    type: Literal["session.error"]
    code: Optional[str] = None
    message: str = "unknown error"


class SessionClosedMessage(RealtimeBaseMessage):
    type: Literal["session.closed"]
    reason: Optional[str] = None


InboundMessage = Union[
    SessionReadyMessage,
    AudioOutputDeltaMessage,
    TextOutputDeltaMessage,
    InputTranscriptMessage,
    FunctionCallMessage,
    SessionErrorMessage,
    SessionClosedMessage,
]

_inbound_adapter = TypeAdapter(InboundMessage)

INBOUND_TYPES = {
    "session.ready",
    "audio.output.delta",
    "text.output.delta",
    "input.transcript",
    "function.call",
    "session.error",
    "session.closed",
}


def parse_inbound(data: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Parse a decoded inbound message.

    Returns:
        The typed message, or None for message types this engine does not consume.

    Raises:
        pydantic.ValidationError: if a known message type is malformed
    """
    if data.get("type") not in INBOUND_TYPES:
        return None
    return _inbound_adapter.validate_python(data)
