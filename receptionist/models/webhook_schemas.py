"""
Pydantic models for telephony provider webhook payloads.

Two shapes are accepted: the provider envelope
``{"data": {"id", "event_type", "occurred_at", "payload": {...}}}`` and the flat
form ``{"event_type", "call_control_id", "from", "to", ...}``. Both are reduced to
a WebhookEventData before being normalized into CallEvents.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Pattern, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from receptionist.config.constants import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

PHONE_PATTERN: Pattern = re.compile(r"^\+?[0-9\- ]{6,15}$")
DTMF_DIGITS = "0123456789*#ABCD"


class RecordingUrls(BaseModel):
    """Provider recording URL set (one per format)."""

    model_config = ConfigDict(extra="allow")

    mp3: Optional[str] = None
    wav: Optional[str] = None


class WebhookCallPayload(BaseModel):
    """Call-scoped attributes carried by a webhook event."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    call_control_id: str = Field(..., min_length=1, max_length=256)
    from_number: Optional[str] = Field(None, alias="from")
    to_number: Optional[str] = Field(None, alias="to")
    direction: Optional[str] = None
    state: Optional[str] = None
    recording_url: Optional[str] = None
    recording_urls: Optional[Union[RecordingUrls, List[Any]]] = None
    public_recording_urls: Optional[RecordingUrls] = None
    digit: Optional[str] = None
    client_state: Optional[str] = None

    @field_validator("from_number", "to_number")
    def validate_phone(cls, v):
        """Warn (but accept) numbers that do not look like phone numbers."""
        if v and v.replace("+", "").replace("-", "").replace(" ", "").isdigit():
            if not PHONE_PATTERN.match(v):
                logger.warning(f"Number doesn't match expected phone pattern: {v}")
        return v

    @field_validator("digit")
    def validate_digit(cls, v):
        if v is not None and (len(v) != 1 or v not in DTMF_DIGITS):
            raise ValueError(f"Invalid DTMF value: {v}")
        return v

    def resolved_recording_url(self) -> Optional[str]:
        """First recording URL found across the provider's URL fields."""
        if self.recording_url:
            return self.recording_url
        for urls in (self.recording_urls, self.public_recording_urls):
            if isinstance(urls, RecordingUrls):
                if urls.mp3 or urls.wav:
                    return urls.mp3 or urls.wav
            elif isinstance(urls, list):
                for item in urls:
                    if isinstance(item, str):
                        return item
                    if isinstance(item, dict) and item.get("url"):
                        return item["url"]
        return None


class WebhookEventData(BaseModel):
    """One provider event inside the envelope."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(None, max_length=256)
    event_type: str = Field(..., min_length=1)
    occurred_at: Optional[datetime] = None
    payload: WebhookCallPayload


class WebhookEnvelope(BaseModel):
    """Provider envelope carrying a single event or a batch."""

    model_config = ConfigDict(extra="allow")

    data: Union[WebhookEventData, List[WebhookEventData]]

    def events(self) -> List[WebhookEventData]:
        return self.data if isinstance(self.data, list) else [self.data]


class FlatWebhookEvent(BaseModel):
    """Flat webhook form: event attributes at the top level."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[str] = Field(None, alias="event_id")
    event_type: str = Field(..., min_length=1)
    call_control_id: str = Field(..., min_length=1, max_length=256)
    from_number: Optional[str] = Field(None, alias="from")
    to_number: Optional[str] = Field(None, alias="to")
    direction: Optional[str] = None
    state: Optional[str] = None
    occurred_at: Optional[datetime] = Field(None, alias="timestamp")
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_event_data(self) -> WebhookEventData:
        # Unknown top-level fields (recording_url, digit, ...) belong to the call payload
        call_payload = {**(self.model_extra or {}), **self.payload}
        call_payload["call_control_id"] = self.call_control_id
        for key, value in (
            ("from", self.from_number),
            ("to", self.to_number),
            ("direction", self.direction),
            ("state", self.state),
        ):
            if value is not None:
                call_payload[key] = value
        return WebhookEventData(
            id=self.id,
            event_type=self.event_type,
            occurred_at=self.occurred_at,
            payload=WebhookCallPayload.model_validate(call_payload),
        )


class BookingRequest(BaseModel):
    """Body of the booking notification sent by the conversation layer."""

    appointment_id: Optional[str] = None
    service_type: Optional[str] = None
    customer_name: Optional[str] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the provider."""

    status: str = "accepted"
    received: int = 0
    accepted: int = 0
    duplicates: int = 0
    deferred: int = 0
