"""
Outcome dispatcher: the once-per-call side effects of a call ending.

On the transition into ended it publishes the call record to the call log, a
billing trigger when an appointment was booked, and an operator notification for
voicemail and error outcomes. Every collaborator call runs as a background job
with bounded exponential backoff; jobs that exhaust their attempts are parked in
a bounded reconciliation queue that the call manager retries periodically. A
dispatch failure never touches call state. Dispatched call ids are remembered in a
ProcessedEventLog, so the exactly-once record has the same retention bounds as
webhook idempotency.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, List, Optional, Set

from receptionist.config.constants import BILLABLE_KIND_APPOINTMENT, LOGGER_NAME
from receptionist.exceptions import ReceptionistError
from receptionist.models.call import Call, CallOutcome
from receptionist.models.event_log import ProcessedEventLog
from receptionist.services.collaborators import BillingService, CallLogService, NotificationService

logger = logging.getLogger(LOGGER_NAME)

NOTIFY_OUTCOMES = {
    CallOutcome.VOICEMAIL_FALLBACK: "normal",
    CallOutcome.ERROR: "high",
}


@dataclass
class DispatchJob:
    kind: str
    call_id: str
    action: Callable[[], Awaitable[None]]
    attempts: int = 0
    last_error: Optional[str] = None


class OutcomeDispatcher:
    """Fires terminal side effects exactly once per call, with retry."""

    def __init__(self, call_log: CallLogService, billing: BillingService,
                 notifications: NotificationService, max_attempts: int = 5,
                 base_delay: float = 0.5, max_delay: float = 8.0,
                 max_parked: int = 1000,
                 dispatched: Optional[ProcessedEventLog] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.call_log = call_log
        self.billing = billing
        self.notifications = notifications
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self.max_parked = max_parked
        self._dispatched = dispatched if dispatched is not None else ProcessedEventLog()
        self._tasks: Set[asyncio.Task] = set()
        self.reconciliation: Deque[DispatchJob] = deque()

    @property
    def pending_count(self) -> int:
        return len(self.reconciliation)

    def has_dispatched(self, call_id: str) -> bool:
        return self._dispatched.contains(call_id)

    def dispatch(self, call: Call) -> bool:
        """
        Publish the outcome of an ended call.

        Returns:
            True the first time for a call_id, False for any repeat (nothing is sent)
        """
        if not self._dispatched.record_if_new(call.call_id):
            logger.warning(f"Outcome for call {call.call_id} already dispatched; ignoring")
            return False

        record = call.snapshot()
        tenant_id, call_id = call.tenant_id, call.call_id
        logger.info(f"Dispatching outcome {call.outcome.value if call.outcome else None} "
                    f"for call {call_id}")

        self._schedule(DispatchJob("record_call", call_id,
                                   lambda: self.call_log.record_call(record)))
        if call.appointment_booked:
            self._schedule(DispatchJob(
                "billing", call_id,
                lambda: self.billing.report_billable_event(
                    tenant_id, call_id, BILLABLE_KIND_APPOINTMENT),
            ))
        severity = NOTIFY_OUTCOMES.get(call.outcome)
        if severity:
            message = (f"Call {call_id} from {call.from_number or 'unknown'} ended "
                       f"with outcome {call.outcome.value}")
            if call.failure_reason:
                message += f": {call.failure_reason}"
            self.notify(tenant_id, call_id, severity, message)
        return True

    def notify(self, tenant_id: Optional[str], call_id: str, severity: str,
               message: str) -> None:
        self._schedule(DispatchJob(
            f"notify:{severity}", call_id,
            lambda: self.notifications.notify(tenant_id, severity, message),
        ))

    def attach_recording(self, call_id: str, recording_url: str) -> None:
        self._schedule(DispatchJob(
            "attach_recording", call_id,
            lambda: self.call_log.attach_recording(call_id, recording_url),
        ))

    def _schedule(self, job: DispatchJob) -> asyncio.Task:
        task = asyncio.create_task(self._run(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def _run(self, job: DispatchJob) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            job.attempts += 1
            try:
                await job.action()
                if attempt > 1:
                    logger.info(f"{job.kind} for call {job.call_id} succeeded on attempt {attempt}")
                return True
            except ReceptionistError as e:
                job.last_error = str(e)
                logger.warning(
                    f"{job.kind} for call {job.call_id} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
            except Exception as e:
                job.last_error = f"{type(e).__name__}: {e}"
                logger.error(
                    f"{job.kind} for call {job.call_id} raised unexpectedly "
                    f"(attempt {attempt}/{self.max_attempts}): {job.last_error}",
                    exc_info=True,
                )
            if attempt < self.max_attempts:
                await self._sleep(self.backoff(attempt))

        self._park(job)
        return False

    def _park(self, job: DispatchJob) -> None:
        if len(self.reconciliation) >= self.max_parked:
            dropped = self.reconciliation.popleft()
            logger.error(f"Reconciliation queue full; dropping {dropped.kind} for call "
                         f"{dropped.call_id} ({dropped.last_error})")
        logger.error(f"{job.kind} for call {job.call_id} queued for reconciliation: "
                     f"{job.last_error}")
        self.reconciliation.append(job)

    async def reconcile(self) -> int:
        """
        Retry every parked job once more (with the normal backoff).

        Returns:
            Number of jobs that succeeded; failures are parked again
        """
        jobs: List[DispatchJob] = []
        while self.reconciliation:
            jobs.append(self.reconciliation.popleft())
        succeeded = 0
        for job in jobs:
            if await self._run(job):
                succeeded += 1
        if jobs:
            logger.info(f"Reconciled {succeeded}/{len(jobs)} dispatch jobs")
        return succeeded

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight dispatch jobs."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
