"""
Webhook ingress for telephony provider events.

Every request is authenticated (HMAC-SHA256 over "{timestamp}|{raw body}" with a
shared secret, constant-time comparison, bounded timestamp age), rate limited per
source identity, parsed into zero or more CallEvents and deduplicated against the
ProcessedEventLog. New events are handed to the call manager; the provider gets an
acknowledgement straight away and never waits on call processing. Events the
manager refuses (worker queue full, shutting down) are acknowledged as deferred,
kept in a bounded dead-letter queue and offered again by redeliver().

This is the only place that rejects input for authentication reasons.
"""

import hashlib
import hmac
import json
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from receptionist.config.constants import (
    LOGGER_NAME,
    PROVIDER_EVENT_TYPES,
    SIGNATURE_HEADER,
    SOURCE_HEADER,
    TIMESTAMP_HEADER,
)
from receptionist.config.settings import Settings
from receptionist.exceptions import AuthenticationError, DuplicateEventError, PayloadError
from receptionist.handlers.rate_limiter import SlidingWindowRateLimiter
from receptionist.models.event_log import ProcessedEventLog
from receptionist.models.events import CallEvent, CallEventType
from receptionist.models.webhook_schemas import (
    FlatWebhookEvent,
    WebhookAck,
    WebhookEnvelope,
    WebhookEventData,
)

logger = logging.getLogger(LOGGER_NAME)

EVENT_TYPE_VALUES = {t.value for t in CallEventType}


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of "{timestamp}|{body}"."""
    message = timestamp.encode("utf-8") + b"|" + body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def normalize_event_type(name: str) -> Optional[CallEventType]:
    value = PROVIDER_EVENT_TYPES.get(name, name)
    if value not in EVENT_TYPE_VALUES:
        return None
    return CallEventType(value)


def derive_event_id(data: WebhookEventData) -> str:
    """Stable id for events delivered without one, so provider retries still dedupe."""
    canonical = json.dumps(
        data.model_dump(mode="json", by_alias=True, exclude_none=True),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def to_call_event(data: WebhookEventData) -> Optional[CallEvent]:
    """Normalize one provider event. Returns None for event types the engine ignores."""
    event_type = normalize_event_type(data.event_type)
    if event_type is None:
        logger.info(f"Ignoring unsupported webhook event type: {data.event_type}")
        return None

    payload = data.payload
    attributes: Dict[str, Any] = {
        "event_id": data.id or derive_event_id(data),
        "call_id": payload.call_control_id,
        "event_type": event_type,
        "from_number": payload.from_number,
        "to_number": payload.to_number,
        "direction": payload.direction,
        "state": payload.state,
        "recording_url": payload.resolved_recording_url(),
        "digit": payload.digit,
        "raw_payload": payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    }
    if data.occurred_at is not None:
        attributes["timestamp"] = data.occurred_at
    return CallEvent(**attributes)


def parse_events(body: bytes, default_event_type: Optional[str] = None) -> List[CallEvent]:
    """
    Parse a webhook body into CallEvents.

    Accepts the provider envelope (single event or batch), the flat form, or a
    top-level list of either.

    Args:
        body: Raw request body
        default_event_type: Event type assumed for flat events that omit one

    Raises:
        PayloadError: if the body is not valid JSON or matches no known shape
    """
    try:
        document = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise PayloadError(f"Webhook body is not valid JSON: {e}") from e

    items = document if isinstance(document, list) else [document]
    event_data: List[WebhookEventData] = []
    try:
        for item in items:
            if not isinstance(item, dict):
                raise PayloadError("Webhook events must be JSON objects")
            if "data" in item:
                event_data.extend(WebhookEnvelope.model_validate(item).events())
                continue
            if default_event_type and "event_type" not in item:
                item = {**item, "event_type": default_event_type}
            event_data.append(FlatWebhookEvent.model_validate(item).to_event_data())
    except ValidationError as e:
        raise PayloadError(f"Invalid webhook payload: {e.error_count()} validation errors") from e

    events = []
    for data in event_data:
        event = to_call_event(data)
        if event is not None:
            events.append(event)
    return events


class WebhookIngress:
    """Authenticates, throttles, parses and deduplicates provider webhooks."""

    def __init__(self, settings: Settings, event_log: ProcessedEventLog,
                 rate_limiter: SlidingWindowRateLimiter,
                 sink: Callable[[CallEvent], bool],
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.event_log = event_log
        self.rate_limiter = rate_limiter
        self.sink = sink
        self._clock = clock
        self.dead_letters: Deque[Tuple[CallEvent, int]] = deque()

    def verify_signature(self, body: bytes, signature: Optional[str],
                         timestamp: Optional[str]) -> None:
        """
        Verify the webhook signature and timestamp.

        Raises:
            AuthenticationError: if the signature is missing, stale or wrong
        """
        if self.settings.webhook_verify_disabled:
            return
        secret = self.settings.webhook_secret
        if not secret:
            raise AuthenticationError("Webhook secret is not configured")
        if not signature or not timestamp:
            raise AuthenticationError("Missing webhook signature headers")

        try:
            signed_at = float(timestamp)
        except ValueError:
            raise AuthenticationError("Malformed webhook timestamp")
        age = abs(self._clock() - signed_at)
        if age > self.settings.webhook_tolerance:
            raise AuthenticationError(f"Webhook timestamp outside tolerance ({age:.0f}s)")

        if signature.startswith("sha256="):
            signature = signature[len("sha256="):]
        expected = compute_signature(secret, timestamp, body)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise AuthenticationError("Invalid webhook signature")

    def verify_request(self, body: bytes, headers: Mapping[str, str]) -> None:
        self.verify_signature(body, headers.get(SIGNATURE_HEADER), headers.get(TIMESTAMP_HEADER))

    def handle(self, body: bytes, headers: Mapping[str, str],
               default_event_type: Optional[str] = None) -> WebhookAck:
        """
        Process one webhook delivery.

        Returns:
            WebhookAck with counts of received, accepted, duplicate and deferred events

        Raises:
            AuthenticationError: bad signature (nothing is processed)
            ThrottledError: source over its rate limit
            PayloadError: unparseable body
        """
        self.verify_request(body, headers)
        events = parse_events(body, default_event_type)

        source = headers.get(SOURCE_HEADER) or (events[0].source if events else None)
        if source:
            self.rate_limiter.check(source)

        ack = WebhookAck(received=len(events))
        for event in events:
            try:
                accepted = self._accept(event)
            except DuplicateEventError as e:
                logger.info(f"{e} (call {event.call_id}, {event.event_type.value})")
                ack.duplicates += 1
                continue
            if accepted:
                ack.accepted += 1
            else:
                self._dead_letter(event, attempts=1)
                ack.deferred += 1
        return ack

    def handle_recording(self, body: bytes, headers: Mapping[str, str]) -> WebhookAck:
        return self.handle(body, headers, default_event_type=CallEventType.RECORDING_READY.value)

    def _accept(self, event: CallEvent) -> bool:
        """
        Record the event id and hand the event to the sink.

        The id is released again when the sink refuses the event, so it is not
        mistaken for a duplicate when it is delivered again.

        Raises:
            DuplicateEventError: the event id was already processed
        """
        if not self.event_log.record_if_new(event.event_id):
            raise DuplicateEventError(event.event_id)
        if not self.sink(event):
            self.event_log.discard(event.event_id)
            logger.warning(
                f"Webhook event {event.event_id} ({event.event_type.value}) for call "
                f"{event.call_id} was not accepted by the engine"
            )
            return False
        logger.info(
            f"Webhook event accepted: {event.event_type.value} for call {event.call_id} "
            f"(id: {event.event_id})"
        )
        return True

    def _dead_letter(self, event: CallEvent, attempts: int) -> None:
        if attempts >= self.settings.dead_letter_attempts:
            logger.error(
                f"Giving up on webhook event {event.event_id} for call {event.call_id} "
                f"after {attempts} attempts"
            )
            return
        if len(self.dead_letters) >= self.settings.dead_letter_max:
            dropped, _ = self.dead_letters.popleft()
            logger.error(f"Dead-letter queue full; dropping webhook event {dropped.event_id}")
        self.dead_letters.append((event, attempts))

    def redeliver(self) -> int:
        """
        Offer every dead-lettered event to the sink again.

        Returns:
            Number of events the sink accepted on this pass
        """
        pending = list(self.dead_letters)
        self.dead_letters.clear()
        delivered = 0
        for event, attempts in pending:
            try:
                accepted = self._accept(event)
            except DuplicateEventError:
                # A provider retry got through first
                continue
            if accepted:
                delivered += 1
            else:
                self._dead_letter(event, attempts + 1)
        if pending:
            logger.info(f"Redelivered {delivered}/{len(pending)} dead-lettered webhook events")
        return delivered
