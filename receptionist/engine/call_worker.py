"""
Call worker: the single task that owns one call.

All inputs for a call_id (webhook events, session results, timers, media attachment)
are queued to its worker and applied one at a time, in arrival order, so the Call
aggregate needs no locking. Follow-up inputs produced by a transition are applied
before the next queued input. After the call ends the worker lingers for the
eviction grace period to absorb late events, then evicts the call and exits.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Optional

from receptionist.config.constants import LOGGER_NAME
from receptionist.engine.state_machine import CallStateMachine, EngineContext
from receptionist.exceptions import InvalidTransitionError
from receptionist.models.events import CallInput, InputType

logger = logging.getLogger(LOGGER_NAME)


class CallWorker:
    """Serializes every input for one call through its state machine."""

    def __init__(self, call_id: str, context: EngineContext, queue_size: int = 256,
                 on_exit: Optional[Callable[["CallWorker"], None]] = None):
        self.call_id = call_id
        self.context = context
        self.eviction_grace = context.settings.eviction_grace
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.machine = CallStateMachine(call_id, context, hangup_pending=self.hangup_pending)
        self.on_exit = on_exit
        self.task: Optional[asyncio.Task] = None
        self.finished = False
        self.processed = 0
        self._pending_hangups = 0
        self._ended_at: Optional[float] = None

    def start(self) -> asyncio.Task:
        if self.task is None:
            self.task = asyncio.create_task(self.run(), name=f"call-worker-{self.call_id}")
        return self.task

    def submit(self, call_input: CallInput) -> bool:
        """Queue an input. Returns False if the worker has exited or its queue is full."""
        if self.finished:
            return False
        try:
            self.queue.put_nowait(call_input)
        except asyncio.QueueFull:
            logger.error(f"Input queue full for call {self.call_id}; "
                         f"dropping {call_input.type.value}")
            return False
        if call_input.type == InputType.HANGUP:
            self._pending_hangups += 1
        return True

    def hangup_pending(self) -> bool:
        return self._pending_hangups > 0

    async def run(self) -> None:
        try:
            while True:
                call_input = await self._next_input()
                if call_input is None:
                    break
                try:
                    await self._process(call_input)
                finally:
                    self.queue.task_done()
                if self.machine.call is None and self.queue.empty():
                    # Never became a call (e.g. hangup for an unknown call_id)
                    break
        except asyncio.CancelledError:
            logger.info(f"Worker for call {self.call_id} cancelled")
        finally:
            self.finished = True
            if self.machine.ended:
                self.context.registry.evict(self.call_id)
            if self.on_exit is not None:
                self.on_exit(self)

    async def _next_input(self) -> Optional[CallInput]:
        if not self.machine.ended:
            return await self.queue.get()

        if self._ended_at is None:
            self._ended_at = time.monotonic()
        if not self.queue.empty():
            return self.queue.get_nowait()
        remaining = self._ended_at + self.eviction_grace - time.monotonic()
        if remaining <= 0:
            return None
        try:
            return await asyncio.wait_for(self.queue.get(), timeout=remaining)
        except asyncio.TimeoutError:
            return None

    async def _process(self, call_input: CallInput) -> None:
        if call_input.type == InputType.HANGUP:
            self._pending_hangups -= 1

        pending = deque([call_input])
        while pending:
            item = pending.popleft()
            try:
                follow_ups = await self.machine.handle(item)
            except InvalidTransitionError as e:
                logger.info(f"Discarded: {e}")
                continue
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error processing {item.type.value} for call {self.call_id}: {e}",
                             exc_info=True)
                follow_ups = self.machine.recover(item, e)
            self.processed += 1
            pending.extend(follow_ups)
