"""
Call manager: routes inputs to per-call workers and owns the engine's components.

The manager is the seam between the HTTP/WebSocket surface and the engine. It
creates a CallWorker the first time an initiated or answered event arrives for a
call_id (a plain dict operation, so two events for the same unseen call never
create two workers) and forwards every later input for that call to the same
worker. Inputs for unknown calls are logged and discarded.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from receptionist.bot.audio_bridge import AudioBridge
from receptionist.bot.session_broker import SessionBroker
from receptionist.config.constants import LOGGER_NAME
from receptionist.config.settings import Settings
from receptionist.engine.call_worker import CallWorker
from receptionist.engine.fallback import FallbackController
from receptionist.engine.outcome_dispatcher import OutcomeDispatcher
from receptionist.engine.state_machine import EngineContext
from receptionist.models.call import Call, CallState
from receptionist.models.call_registry import CallRegistry
from receptionist.models.event_log import ProcessedEventLog
from receptionist.models.events import CallEvent, CallInput, InputType
from receptionist.services.collaborators import (
    BillingService,
    CallLogService,
    NotificationService,
    TenantConfigService,
)
from receptionist.services.telephony import TelephonyClient

logger = logging.getLogger(LOGGER_NAME)

CREATING_INPUTS = (InputType.INITIATED, InputType.ANSWERED)


class CallManager:
    """Owns the call workers and the components they share."""

    def __init__(self, settings: Settings, registry: Optional[CallRegistry] = None,
                 broker=None, dispatcher=None, fallback=None, telephony=None,
                 tenant_service=None, bridge_factory=None):
        self.settings = settings
        self.registry = registry or CallRegistry()
        self.tenant_service = tenant_service or TenantConfigService(
            settings.tenant_service_url, settings.service_api_token, settings.service_timeout
        )
        self.telephony = telephony or TelephonyClient(
            settings.telephony_api_url, settings.telephony_api_key, settings.service_timeout
        )
        self.dispatcher = dispatcher or OutcomeDispatcher(
            CallLogService(settings.call_log_service_url, settings.service_api_token,
                           settings.service_timeout),
            BillingService(settings.billing_service_url, settings.service_api_token,
                           settings.service_timeout),
            NotificationService(settings.notification_service_url, settings.service_api_token,
                                settings.service_timeout),
            max_attempts=settings.dispatch_max_attempts,
            base_delay=settings.dispatch_base_delay,
            max_delay=settings.dispatch_max_delay,
            max_parked=settings.reconciliation_max,
            dispatched=ProcessedEventLog(settings.event_retention, settings.event_log_max_entries),
        )
        self.fallback = fallback or FallbackController(
            self.telephony, self.dispatcher, settings.voicemail_prompt
        )
        self.broker = broker or SessionBroker(settings, self.tenant_service)
        self.broker.failure_sink = self.submit
        self.context = EngineContext(
            settings=settings,
            registry=self.registry,
            broker=self.broker,
            fallback=self.fallback,
            dispatcher=self.dispatcher,
            telephony=self.telephony,
            tenant_service=self.tenant_service,
            submit=self.submit,
            bridge_factory=bridge_factory or self._make_bridge,
        )
        self.workers: Dict[str, CallWorker] = {}
        self._shutting_down = False
        self._maintenance_task: Optional[asyncio.Task] = None
        self._periodic: List[Callable[[], int]] = []

    def start(self, *periodic: Callable[[], int]) -> None:
        """
        Start the maintenance loop.

        Every reconcile_interval the loop retries parked dispatch jobs and then
        runs each of the given callables (e.g. webhook dead-letter redelivery).
        Must be called from the event loop thread.
        """
        self._periodic = list(periodic)
        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(self._maintain())

    async def _maintain(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reconcile_interval)
            try:
                await self.run_maintenance()
            except Exception as e:
                logger.error(f"Maintenance pass failed: {e}", exc_info=True)

    async def run_maintenance(self) -> None:
        """Retry parked dispatch jobs, then run the registered periodic jobs once."""
        if self.dispatcher.pending_count:
            await self.dispatcher.reconcile()
        for job in self._periodic:
            job()

    def _make_bridge(self, call: Call, leg, transport, sink) -> AudioBridge:
        return AudioBridge(
            call, leg, transport, sink,
            queue_size=self.settings.bridge_queue_size,
            policy=self.settings.bridge_overflow_policy,
            relay_timeout=self.settings.relay_timeout,
        )

    def submit(self, call_input: CallInput) -> bool:
        """
        Route an input to its call's worker, starting the worker if needed.

        Must be called from the event loop thread.

        Returns:
            True if the input was queued, False if it was discarded
        """
        call_id = call_input.call_id
        worker = self.workers.get(call_id)
        if worker is None or worker.finished:
            if call_input.type not in CREATING_INPUTS and call_id not in self.registry:
                logger.info(f"Discarding {call_input.type.value} for unknown call {call_id}")
                return False
            if self._shutting_down and call_input.type in CREATING_INPUTS:
                logger.warning(f"Shutting down; not accepting new call {call_id}")
                return False
            worker = CallWorker(call_id, self.context, self.settings.worker_queue_size,
                                on_exit=self._retire)
            self.workers[call_id] = worker
            worker.start()
        return worker.submit(call_input)

    def submit_event(self, event: CallEvent) -> bool:
        return self.submit(CallInput.from_event(event))

    def _retire(self, worker: CallWorker) -> None:
        if self.workers.get(worker.call_id) is worker:
            del self.workers[worker.call_id]
        logger.debug(f"Worker retired for call {worker.call_id} ({worker.processed} inputs)")

    def get_call(self, call_id: str) -> Optional[Call]:
        return self.registry.get(call_id)

    def confirm_booking(self, call_id: str, details: Optional[dict] = None) -> bool:
        call = self.registry.get(call_id)
        if call is None or call.is_terminal:
            return False
        return self.submit(CallInput.internal(InputType.BOOKING_CONFIRMED, call_id,
                                              payload=details))

    def attach_media(self, call_id: str, leg) -> bool:
        if call_id not in self.registry:
            return False
        return self.submit(CallInput.internal(InputType.MEDIA_ATTACHED, call_id, payload=leg))

    def stats(self) -> dict:
        return {
            "active_calls": len(self.registry.active_calls()),
            "workers": len(self.workers),
            "live_sessions": len(self.broker.live_sessions()),
            "pending_dispatches": self.dispatcher.pending_count,
        }

    def _ai_active_calls(self) -> List[Call]:
        return [c for c in self.registry.active_calls() if c.state == CallState.AI_ACTIVE]

    async def shutdown(self) -> None:
        """Drain in-flight calls: AI calls go to voicemail, then everything is closed."""
        self._shutting_down = True
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            await asyncio.gather(self._maintenance_task, return_exceptions=True)
            self._maintenance_task = None
        drained = []
        for call in self._ai_active_calls():
            worker = self.workers.get(call.call_id)
            if worker is not None and worker.submit(CallInput.internal(
                    InputType.AI_SESSION_FAILED, call.call_id, reason="service shutting down")):
                drained.append(worker)
        if drained:
            logger.info(f"Draining {len(drained)} AI calls to voicemail")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(w.queue.join() for w in drained)),
                    timeout=self.settings.shutdown_drain,
                )
            except asyncio.TimeoutError:
                logger.warning("Shutdown drain timed out; some calls were not handed off")

        for worker in list(self.workers.values()):
            if worker.task is not None and not worker.task.done():
                worker.task.cancel()
        tasks = [w.task for w in self.workers.values() if w.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.broker.close_all()
        await self.dispatcher.flush(timeout=self.settings.shutdown_drain)
        for service in (self.tenant_service, self.telephony, self.dispatcher.call_log,
                        self.dispatcher.billing, self.dispatcher.notifications):
            await service.aclose()
        logger.info("Call manager shut down")
