"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the application,
providing a centralized location for names and defaults and making it easier to
maintain consistent naming throughout the codebase.
"""

# Logger name used throughout the application
LOGGER_NAME = "receptionist"

SERVICE_NAME = "AI Receptionist"
SERVICE_VERSION = "1.0.0"

# Webhook signature headers
SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
SOURCE_HEADER = "X-Provider-Account"

# Default timings (seconds)
DEFAULT_NO_ANSWER_TIMEOUT = 30.0
DEFAULT_EVICTION_GRACE = 60.0
DEFAULT_EVENT_RETENTION = 24 * 60 * 60
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_SILENCE_THRESHOLD = 20.0
DEFAULT_FORCE_CLOSE_THRESHOLD = 10.0
DEFAULT_HEARTBEAT_INTERVAL = 5.0
DEFAULT_RELAY_TIMEOUT = 10.0
DEFAULT_RECONCILE_INTERVAL = 60.0

# Bridge queue overflow policies
OVERFLOW_DROP_OLDEST = "drop-oldest"
OVERFLOW_BLOCK = "block"

# Provider event names mapped onto CallEventType values
PROVIDER_EVENT_TYPES = {
    "call.initiated": "initiated",
    "call.answered": "answered",
    "call.hangup": "hangup",
    "call.recording.saved": "recording-ready",
    "call.dtmf.received": "dtmf",
    "call.error": "error",
}

# AI session transport message types
MESSAGE_TYPE_SESSION_CONFIGURE = "session.configure"
MESSAGE_TYPE_SESSION_READY = "session.ready"
MESSAGE_TYPE_SESSION_ERROR = "session.error"
MESSAGE_TYPE_SESSION_CLOSED = "session.closed"
MESSAGE_TYPE_AUDIO_INPUT = "audio.input"
MESSAGE_TYPE_TEXT_INPUT = "text.input"
MESSAGE_TYPE_AUDIO_OUTPUT_DELTA = "audio.output.delta"
MESSAGE_TYPE_TEXT_OUTPUT_DELTA = "text.output.delta"
MESSAGE_TYPE_INPUT_TRANSCRIPT = "input.transcript"
MESSAGE_TYPE_FUNCTION_CALL = "function.call"

# Function names the AI backend uses to report a booked appointment
BOOKING_FUNCTION_NAMES = ("schedule_appointment", "book_appointment")
BILLABLE_KIND_APPOINTMENT = "appointment_booked"

# Telephony media stream message events
MEDIA_EVENT_CONNECTED = "connected"
MEDIA_EVENT_START = "start"
MEDIA_EVENT_MEDIA = "media"
MEDIA_EVENT_STOP = "stop"
MEDIA_EVENT_CLEAR = "clear"

DEFAULT_VOICEMAIL_PROMPT = (
    "Sorry, our assistant is unavailable right now. "
    "Please leave a message after the tone and we will call you back."
)
