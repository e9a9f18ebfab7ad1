"""
Audio bridge between the caller's media leg and the AI session.

The bridge is a pure relay: four pumps (caller -> queue -> AI, AI -> queue -> caller)
run concurrently so a stalled leg never blocks the other direction. Both queues are
bounded; when full they either drop the oldest frame or block the producer,
depending on the configured overflow policy. Text deltas and caller transcripts
go through a single TranscriptAppender so transcript order is arrival order.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from receptionist.bot.realtime_api import RealtimeSessionClient
from receptionist.config.constants import (
    BOOKING_FUNCTION_NAMES,
    LOGGER_NAME,
    OVERFLOW_BLOCK,
    OVERFLOW_DROP_OLDEST,
)
from receptionist.exceptions import TransportError
from receptionist.models.call import Call, Speaker, Utterance
from receptionist.models.events import CallInput, InputType
from receptionist.models.realtime_schemas import (
    AudioOutputDeltaMessage,
    FunctionCallMessage,
    InputTranscriptMessage,
    SessionClosedMessage,
    SessionErrorMessage,
    TextOutputDeltaMessage,
)

logger = logging.getLogger(LOGGER_NAME)


class CallerLeg(Protocol):
    """The telephony side of the bridge."""

    async def receive_audio(self) -> Optional[bytes]: ...

    async def send_audio(self, chunk: bytes) -> None: ...

    async def clear(self) -> None: ...


class BridgeResult(str, Enum):
    CALLER_CLOSED = "caller-closed"
    AI_COMPLETED = "ai-completed"
    AI_FAILED = "ai-failed"
    STOPPED = "stopped"


class FrameQueue:
    """Bounded FIFO of audio frames with a drop-oldest or block overflow policy."""

    def __init__(self, maxsize: int, policy: str = OVERFLOW_DROP_OLDEST):
        if policy not in (OVERFLOW_DROP_OLDEST, OVERFLOW_BLOCK):
            raise ValueError(f"Unsupported overflow policy: {policy}")
        self.policy = policy
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def put(self, frame: bytes) -> None:
        if self.policy == OVERFLOW_BLOCK:
            await self._queue.put(frame)
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(frame)

    async def get(self) -> bytes:
        return await self._queue.get()

    def clear(self) -> int:
        cleared = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            cleared += 1
        return cleared

    def qsize(self) -> int:
        return self._queue.qsize()


class TranscriptAppender:
    """
    Single writer of Call.transcript.

    Streamed text deltas of one agent response accumulate in a single open entry,
    and cumulative partial caller transcripts overwrite the open caller entry.
    Entries already marked final are never modified; later text starts a new one.
    """

    def __init__(self, call: Call):
        self.call = call

    def _last(self) -> Optional[Utterance]:
        return self.call.transcript[-1] if self.call.transcript else None

    def agent_delta(self, delta: str, response_id: Optional[str] = None,
                    done: bool = False) -> Utterance:
        last = self._last()
        if (last is not None and last.speaker == Speaker.AGENT and not last.final
                and last.response_id == response_id):
            last.text += delta
            last.final = done
            return last
        utterance = Utterance(speaker=Speaker.AGENT, text=delta,
                              response_id=response_id, final=done)
        self.call.transcript.append(utterance)
        return utterance

    def caller_utterance(self, text: str, final: bool = True) -> Utterance:
        last = self._last()
        # Partial caller transcripts are cumulative: replace rather than append
        if last is not None and last.speaker == Speaker.CALLER and not last.final:
            last.text = text
            last.final = final
            return last
        utterance = Utterance(speaker=Speaker.CALLER, text=text, final=final)
        self.call.transcript.append(utterance)
        return utterance


class AudioBridge:
    """
    Relays one call's audio between the caller leg and the AI session.

    The bridge holds non-owning references to both transports; the session broker
    and the media handler close them. Results that matter to the call lifecycle
    (AI completed, AI failed, booking confirmed) are reported through the sink as
    CallInputs for the call worker.
    """

    def __init__(self, call: Call, caller: CallerLeg, session: RealtimeSessionClient,
                 sink: Callable[[CallInput], bool], queue_size: int = 64,
                 policy: str = OVERFLOW_DROP_OLDEST, relay_timeout: float = 10.0):
        self.call = call
        self.call_id = call.call_id
        self.caller = caller
        self.session = session
        self.sink = sink
        self.relay_timeout = relay_timeout
        self.upstream = FrameQueue(queue_size, policy)
        self.downstream = FrameQueue(queue_size, policy)
        self.transcript = TranscriptAppender(call)
        self.frames_in = 0
        self.frames_out = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Stop relaying. Idempotent; never reports a result to the sink."""
        self._stopping = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def run(self) -> BridgeResult:
        pumps = [
            asyncio.create_task(self._pump_caller_to_queue()),
            asyncio.create_task(self._pump_queue_to_ai()),
            asyncio.create_task(self._pump_ai()),
            asyncio.create_task(self._pump_queue_to_caller()),
        ]
        result, reason = BridgeResult.STOPPED, None
        try:
            done, _ = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            finished = next(iter(done))
            try:
                result = finished.result()
            except TransportError as e:
                result, reason = BridgeResult.AI_FAILED, str(e)
        except asyncio.CancelledError:
            result = BridgeResult.STOPPED
            raise
        finally:
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            logger.info(
                f"Bridge for call {self.call_id} finished: {result.value} "
                f"(in: {self.frames_in}, out: {self.frames_out}, "
                f"dropped: {self.upstream.dropped + self.downstream.dropped})"
            )

        if not self._stopping:
            self._report(result, reason)
        return result

    def _report(self, result: BridgeResult, reason: Optional[str]) -> None:
        if result == BridgeResult.AI_COMPLETED:
            self.sink(CallInput.internal(InputType.AI_SESSION_COMPLETED, self.call_id,
                                         reason=reason))
        elif result == BridgeResult.AI_FAILED:
            self.sink(CallInput.internal(InputType.AI_SESSION_FAILED, self.call_id,
                                         reason=reason or "audio relay failed"))

    async def _pump_caller_to_queue(self) -> BridgeResult:
        while True:
            chunk = await self.caller.receive_audio()
            if chunk is None:
                return BridgeResult.CALLER_CLOSED
            self.frames_in += 1
            await self.upstream.put(chunk)

    async def _pump_queue_to_ai(self) -> BridgeResult:
        while True:
            chunk = await self.upstream.get()
            try:
                await asyncio.wait_for(self.session.send_audio(chunk), timeout=self.relay_timeout)
            except asyncio.TimeoutError:
                raise TransportError(f"Relay to AI timed out after {self.relay_timeout}s")

    async def _pump_queue_to_caller(self) -> BridgeResult:
        while True:
            chunk = await self.downstream.get()
            try:
                await asyncio.wait_for(self.caller.send_audio(chunk), timeout=self.relay_timeout)
            except asyncio.TimeoutError:
                raise TransportError(f"Relay to caller timed out after {self.relay_timeout}s")
            self.frames_out += 1

    async def _pump_ai(self) -> BridgeResult:
        while True:
            message = await self.session.receive()
            if message is None:
                return BridgeResult.STOPPED
            if isinstance(message, AudioOutputDeltaMessage):
                await self.downstream.put(message.audio_bytes())
            elif isinstance(message, TextOutputDeltaMessage):
                self.transcript.agent_delta(message.delta, message.response_id, message.done)
            elif isinstance(message, InputTranscriptMessage):
                self.transcript.caller_utterance(message.text, message.final)
                await self._barge_in()
            elif isinstance(message, FunctionCallMessage):
                self._handle_function_call(message)
            elif isinstance(message, SessionErrorMessage):
                raise TransportError(f"AI session error: {message.message}")
            elif isinstance(message, SessionClosedMessage):
                logger.info(f"AI closed the session for call {self.call_id}: {message.reason}")
                return BridgeResult.AI_COMPLETED

    async def _barge_in(self) -> None:
        # Caller is speaking: drop queued agent audio and flush the provider buffer
        if self.downstream.clear():
            try:
                await self.caller.clear()
            except TransportError as e:
                logger.debug(f"Clear failed for call {self.call_id}: {e}")

    def _handle_function_call(self, message: FunctionCallMessage) -> None:
        if message.name in BOOKING_FUNCTION_NAMES:
            logger.info(f"Appointment booked during call {self.call_id}: {message.arguments}")
            self.sink(CallInput.internal(InputType.BOOKING_CONFIRMED, self.call_id,
                                         payload=message.arguments))
        else:
            logger.debug(f"Ignoring function call {message.name} for call {self.call_id}")
