"""
Session broker: owns every live AI conversation session.

Each call has at most one Session. The broker opens it (agent configuration from
the tenant service, connect, session.configure, wait for session.ready, all inside
the connect deadline), supervises it with a periodic liveness check against the
client's inbound activity watermark, and tears it down idempotently.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from receptionist.bot.realtime_api import RealtimeSessionClient
from receptionist.config.constants import LOGGER_NAME
from receptionist.config.settings import Settings
from receptionist.exceptions import SessionUnavailable, TransportError
from receptionist.models.call import Call
from receptionist.models.events import CallInput, InputType
from receptionist.models.realtime_schemas import SessionConfigureMessage
from receptionist.services.collaborators import TenantConfigService

logger = logging.getLogger(LOGGER_NAME)


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    DEGRADED = "degraded"
    CLOSED = "closed"


@dataclass
class Session:
    """A live AI conversation bound to exactly one call."""

    session_id: str
    call_id: str
    transport: RealtimeSessionClient
    status: SessionStatus = SessionStatus.CONNECTING
    opened_at: float = field(default_factory=time.monotonic)
    degraded_at: Optional[float] = None

    @property
    def last_activity_at(self) -> float:
        return self.transport.last_activity

    @property
    def is_live(self) -> bool:
        return self.status in (SessionStatus.ACTIVE, SessionStatus.DEGRADED)


class SessionBroker:
    """Opens, supervises and closes AI sessions, keyed by call_id."""

    def __init__(self, settings: Settings, tenant_service: TenantConfigService,
                 client_factory: Optional[Callable[[], RealtimeSessionClient]] = None,
                 failure_sink: Optional[Callable[[CallInput], bool]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.tenant_service = tenant_service
        self.client_factory = client_factory or self._default_client
        # Set by the call manager so supervision failures reach the call worker
        self.failure_sink = failure_sink
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._opening: Dict[str, Session] = {}
        self._supervisors: Dict[str, asyncio.Task] = {}

    def _default_client(self) -> RealtimeSessionClient:
        if not self.settings.ai_backend_url:
            raise SessionUnavailable("AI_BACKEND_URL is not configured")
        return RealtimeSessionClient(
            self.settings.ai_backend_url,
            api_key=self.settings.ai_backend_api_key,
            model=self.settings.ai_model,
        )

    def get(self, call_id: str) -> Optional[Session]:
        return self._sessions.get(call_id)

    def live_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.is_live]

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, call: Call) -> Session:
        """
        Open the AI session for a call.

        Args:
            call: The call being answered

        Returns:
            Session: the active session (the existing one if the call already has one)

        Raises:
            SessionUnavailable: if configuration, connection or readiness fails
                within the connect timeout
        """
        call_id = call.call_id
        existing = self._sessions.get(call_id)
        if existing is not None and existing.is_live:
            logger.warning(f"Call {call_id} already has session {existing.session_id}")
            return existing
        if call_id in self._opening:
            raise SessionUnavailable(f"Session for call {call_id} is already being opened")

        transport = self.client_factory()
        session = Session(session_id=str(uuid.uuid4()), call_id=call_id, transport=transport)
        self._opening[call_id] = session
        start = self._clock()
        try:
            timeout = self.settings.connect_timeout
            try:
                await asyncio.wait_for(self._establish(transport, call, timeout),
                                       timeout=timeout)
            except asyncio.TimeoutError:
                raise SessionUnavailable(
                    f"AI backend did not become ready within {timeout:.1f}s"
                )
            except TransportError as e:
                raise SessionUnavailable(str(e)) from e
        except SessionUnavailable:
            await transport.close()
            raise
        finally:
            self._opening.pop(call_id, None)

        if transport.session_id:
            session.session_id = transport.session_id
        session.status = SessionStatus.ACTIVE
        self._sessions[call_id] = session
        self._supervisors[call_id] = asyncio.create_task(self._supervise(session))
        logger.info(
            f"AI session {session.session_id} active for call {call_id} "
            f"in {self._clock() - start:.2f}s"
        )
        return session

    async def _establish(self, transport: RealtimeSessionClient, call: Call,
                         timeout: float) -> None:
        config = await self.tenant_service.get_agent_config(call.tenant_id)
        configure = SessionConfigureMessage.from_agent_config(call.call_id, config)
        await transport.connect(timeout)
        await transport.configure(configure)
        await transport.wait_ready(timeout)

    async def send_text(self, call_id: str, text: str) -> None:
        """
        Send a text input to the call's session.

        Raises:
            TransportError: if there is no live session or the send fails
        """
        session = self._sessions.get(call_id)
        if session is None or not session.is_live:
            raise TransportError(f"No live session for call {call_id}")
        await session.transport.send_text(text)

    async def close(self, call_id: str, reason: str = "closed") -> bool:
        """
        Close the call's session. Safe to call repeatedly or for unknown calls.

        Returns:
            True if a session was closed by this call, False if there was none
        """
        session = self._sessions.pop(call_id, None)
        supervisor = self._supervisors.pop(call_id, None)
        if supervisor is not None and supervisor is not asyncio.current_task():
            supervisor.cancel()
        if session is None:
            return False

        session.status = SessionStatus.CLOSED
        try:
            await session.transport.close()
        except (OSError, TransportError) as e:
            logger.warning(f"Error closing session transport for call {call_id}: {e}")
        logger.info(f"AI session {session.session_id} closed for call {call_id} ({reason})")
        return True

    async def close_all(self) -> None:
        for call_id in list(self._sessions):
            await self.close(call_id, reason="shutdown")

    async def _supervise(self, session: Session) -> None:
        """Periodic liveness check for one session."""
        interval = self.settings.heartbeat_interval
        try:
            while session.is_live:
                await asyncio.sleep(interval)
                if not session.is_live:
                    break
                reason = self.check_liveness(session)
                if reason is None and not session.transport.connected:
                    reason = "AI session transport disconnected"
                if reason:
                    await self._force_close(session, reason)
                    break
        except asyncio.CancelledError:
            pass

    def check_liveness(self, session: Session, now: Optional[float] = None) -> Optional[str]:
        """
        Update session health from the inbound activity watermark.

        Returns:
            A failure reason once the session has been degraded for longer than the
            force-close threshold, otherwise None
        """
        now = self._clock() if now is None else now
        silence = now - session.last_activity_at
        if silence < self.settings.silence_threshold:
            if session.status == SessionStatus.DEGRADED:
                logger.info(f"Session for call {session.call_id} recovered")
            session.status = SessionStatus.ACTIVE
            session.degraded_at = None
            return None

        if session.status != SessionStatus.DEGRADED:
            session.status = SessionStatus.DEGRADED
            session.degraded_at = now
            logger.warning(
                f"Session for call {session.call_id} degraded: no activity for {silence:.1f}s"
            )
            return None

        if now - session.degraded_at >= self.settings.force_close_threshold:
            return f"AI session silent for {silence:.1f}s"
        return None

    async def _force_close(self, session: Session, reason: str) -> None:
        logger.error(f"Force-closing session for call {session.call_id}: {reason}")
        await self.close(session.call_id, reason=reason)
        if self.failure_sink is not None:
            self.failure_sink(
                CallInput.internal(InputType.AI_SESSION_FAILED, session.call_id, reason=reason)
            )
