"""
Environment-driven settings for the call orchestration engine.

Settings are read once from the process environment (and a local .env file when
present) into an immutable Settings object that is handed to the components at
startup. Tests build Settings directly with the values they need.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import dotenv

from receptionist.config.constants import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_EVENT_RETENTION,
    DEFAULT_EVICTION_GRACE,
    DEFAULT_FORCE_CLOSE_THRESHOLD,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_NO_ANSWER_TIMEOUT,
    DEFAULT_RECONCILE_INTERVAL,
    DEFAULT_RELAY_TIMEOUT,
    DEFAULT_SILENCE_THRESHOLD,
    DEFAULT_VOICEMAIL_PROMPT,
    OVERFLOW_BLOCK,
    OVERFLOW_DROP_OLDEST,
)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_dir: Optional[str] = "logs"

    # Webhook ingress
    webhook_secret: Optional[str] = None
    webhook_verify_disabled: bool = False
    webhook_tolerance: float = 300.0
    rate_limit_max_events: int = 60
    rate_limit_window: float = 60.0
    event_retention: float = DEFAULT_EVENT_RETENTION
    event_log_max_entries: int = 100_000
    dead_letter_max: int = 1000
    dead_letter_attempts: int = 5

    # Call lifecycle
    no_answer_timeout: float = DEFAULT_NO_ANSWER_TIMEOUT
    eviction_grace: float = DEFAULT_EVICTION_GRACE
    worker_queue_size: int = 256
    shutdown_drain: float = 10.0

    # AI backend / session broker
    ai_backend_url: Optional[str] = None
    ai_backend_api_key: Optional[str] = None
    ai_model: str = "receptionist-realtime"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    silence_threshold: float = DEFAULT_SILENCE_THRESHOLD
    force_close_threshold: float = DEFAULT_FORCE_CLOSE_THRESHOLD
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    # Audio bridge
    bridge_queue_size: int = 64
    bridge_overflow_policy: str = OVERFLOW_DROP_OLDEST
    relay_timeout: float = DEFAULT_RELAY_TIMEOUT
    media_stream_url: Optional[str] = None

    # Telephony call control
    telephony_api_url: Optional[str] = None
    telephony_api_key: Optional[str] = None
    auto_answer: bool = True
    voicemail_prompt: str = DEFAULT_VOICEMAIL_PROMPT

    # Collaborators
    tenant_service_url: Optional[str] = None
    call_log_service_url: Optional[str] = None
    billing_service_url: Optional[str] = None
    notification_service_url: Optional[str] = None
    service_api_token: Optional[str] = None
    service_timeout: float = 10.0
    default_tenant_id: Optional[str] = None

    # Outcome dispatcher retry policy
    dispatch_max_attempts: int = 5
    dispatch_base_delay: float = 0.5
    dispatch_max_delay: float = 8.0
    reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL
    reconciliation_max: int = 1000

    def __post_init__(self):
        if self.bridge_overflow_policy not in (OVERFLOW_DROP_OLDEST, OVERFLOW_BLOCK):
            raise ValueError(
                f"Unsupported bridge overflow policy: {self.bridge_overflow_policy}"
            )
        if self.bridge_queue_size <= 0:
            raise ValueError("Bridge queue size must be positive")
        if self.reconcile_interval <= 0:
            raise ValueError("Reconcile interval must be positive")


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env_file: Optional .env file to load first (defaults to ./.env if it exists)

    Returns:
        Settings: The loaded configuration
    """
    env_path = env_file or Path(".") / ".env"
    if env_path.exists():
        dotenv.load_dotenv(env_path)

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8000),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=os.getenv("LOG_DIR", "logs") or None,
        webhook_secret=os.getenv("WEBHOOK_SECRET"),
        webhook_verify_disabled=_env_bool("WEBHOOK_VERIFY_DISABLED", False),
        webhook_tolerance=_env_float("WEBHOOK_TOLERANCE_SECONDS", 300.0),
        rate_limit_max_events=_env_int("RATE_LIMIT_MAX_EVENTS", 60),
        rate_limit_window=_env_float("RATE_LIMIT_WINDOW_SECONDS", 60.0),
        event_retention=_env_float("EVENT_RETENTION_SECONDS", DEFAULT_EVENT_RETENTION),
        event_log_max_entries=_env_int("EVENT_LOG_MAX_ENTRIES", 100_000),
        dead_letter_max=_env_int("DEAD_LETTER_MAX_EVENTS", 1000),
        dead_letter_attempts=_env_int("DEAD_LETTER_MAX_ATTEMPTS", 5),
        no_answer_timeout=_env_float("NO_ANSWER_TIMEOUT_SECONDS", DEFAULT_NO_ANSWER_TIMEOUT),
        eviction_grace=_env_float("EVICTION_GRACE_SECONDS", DEFAULT_EVICTION_GRACE),
        shutdown_drain=_env_float("SHUTDOWN_DRAIN_SECONDS", 10.0),
        ai_backend_url=os.getenv("AI_BACKEND_URL"),
        ai_backend_api_key=os.getenv("AI_BACKEND_API_KEY"),
        ai_model=os.getenv("AI_MODEL", "receptionist-realtime"),
        connect_timeout=_env_float("SESSION_CONNECT_TIMEOUT_SECONDS", DEFAULT_CONNECT_TIMEOUT),
        silence_threshold=_env_float("SESSION_SILENCE_SECONDS", DEFAULT_SILENCE_THRESHOLD),
        force_close_threshold=_env_float(
            "SESSION_FORCE_CLOSE_SECONDS", DEFAULT_FORCE_CLOSE_THRESHOLD
        ),
        heartbeat_interval=_env_float("SESSION_HEARTBEAT_SECONDS", DEFAULT_HEARTBEAT_INTERVAL),
        bridge_queue_size=_env_int("BRIDGE_QUEUE_SIZE", 64),
        bridge_overflow_policy=os.getenv("BRIDGE_OVERFLOW_POLICY", OVERFLOW_DROP_OLDEST),
        relay_timeout=_env_float("BRIDGE_RELAY_TIMEOUT_SECONDS", DEFAULT_RELAY_TIMEOUT),
        media_stream_url=os.getenv("MEDIA_STREAM_URL"),
        telephony_api_url=os.getenv("TELEPHONY_API_URL"),
        telephony_api_key=os.getenv("TELEPHONY_API_KEY"),
        auto_answer=_env_bool("AUTO_ANSWER", True),
        voicemail_prompt=os.getenv("VOICEMAIL_PROMPT", DEFAULT_VOICEMAIL_PROMPT),
        tenant_service_url=os.getenv("TENANT_SERVICE_URL"),
        call_log_service_url=os.getenv("CALL_LOG_SERVICE_URL"),
        billing_service_url=os.getenv("BILLING_SERVICE_URL"),
        notification_service_url=os.getenv("NOTIFICATION_SERVICE_URL"),
        service_api_token=os.getenv("SERVICE_API_TOKEN"),
        default_tenant_id=os.getenv("DEFAULT_TENANT_ID"),
        dispatch_max_attempts=_env_int("DISPATCH_MAX_ATTEMPTS", 5),
        dispatch_base_delay=_env_float("DISPATCH_BASE_DELAY_SECONDS", 0.5),
        dispatch_max_delay=_env_float("DISPATCH_MAX_DELAY_SECONDS", 8.0),
        reconcile_interval=_env_float("RECONCILE_INTERVAL_SECONDS", DEFAULT_RECONCILE_INTERVAL),
        reconciliation_max=_env_int("RECONCILIATION_MAX_JOBS", 1000),
    )
