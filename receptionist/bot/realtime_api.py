import asyncio
import base64
import json
import logging
import socket
import time
from typing import Dict, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK

from receptionist.config.constants import LOGGER_NAME
from receptionist.exceptions import SessionUnavailable, TransportError
from receptionist.models.realtime_schemas import (
    AudioInputMessage,
    InboundMessage,
    SessionConfigureMessage,
    SessionErrorMessage,
    SessionReadyMessage,
    TextInputMessage,
    parse_inbound,
)

logger = logging.getLogger(LOGGER_NAME)

# WebSocket configuration for low latency
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio chunks
WS_MAX_QUEUE = 32  # Small queue to prevent buffering
WS_PING_INTERVAL = 5  # 5 seconds between pings
SEND_TIMEOUT = 5.0


class _TransportLost:
    """Queue marker: the socket closed without a session.closed message."""

    def __init__(self, reason: str):
        self.reason = reason


class RealtimeSessionClient:
    """
    Client for one AI conversation over a duplex WebSocket.

    Inbound messages are parsed by a background receive loop into a bounded queue;
    when the queue is full the loop stops reading, which pushes backpressure onto
    the socket instead of buffering without bound.
    """

    def __init__(self, url: str, api_key: Optional[str] = None, model: Optional[str] = None,
                 queue_size: int = WS_MAX_QUEUE):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.ws = None
        self.inbound_queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.session_id: Optional[str] = None
        # Updated on inbound frames only
        self.last_activity = time.monotonic()
        self._recv_task: Optional[asyncio.Task] = None
        self._ready = asyncio.Event()
        self._ready_error: Optional[str] = None
        self._connection_active = False
        self._is_closing = False

    @property
    def connected(self) -> bool:
        return self._connection_active and not self._is_closing

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.model:
            headers["X-Model"] = self.model
        return headers

    async def connect(self, timeout: float) -> None:
        """
        Open the WebSocket and start the receive loop.

        Args:
            timeout: Seconds allowed for the connection handshake

        Raises:
            SessionUnavailable: on timeout or connection failure
        """
        if self._is_closing:
            raise SessionUnavailable("Client is closing")

        try:
            logger.info(f"Connecting to AI backend at {self.url}")
            connection_start = time.monotonic()
            self.ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    max_size=WS_MAX_SIZE,
                    max_queue=WS_MAX_QUEUE,
                    ping_interval=WS_PING_INTERVAL,
                    ping_timeout=10,
                    compression=None,  # Disable compression for lower latency
                    additional_headers=self._headers(),
                ),
                timeout=timeout,
            )
            logger.debug(
                f"AI backend connection established in {time.monotonic() - connection_start:.2f}s"
            )
        except asyncio.TimeoutError:
            raise SessionUnavailable(f"Timeout connecting to AI backend after {timeout}s")
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SessionUnavailable(f"Failed to connect to AI backend: {e}") from e

        self._optimize_socket()
        self._connection_active = True
        self.last_activity = time.monotonic()
        self._recv_task = asyncio.create_task(self._recv_loop())

    def _optimize_socket(self) -> None:
        sock = getattr(self.ws, "sock", None) or getattr(
            getattr(self.ws, "transport", None), "get_extra_info", lambda _: None
        )("socket")
        if sock is None:
            return
        try:
            # Disable Nagle's algorithm to send packets immediately
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            logger.debug("AI backend socket: TCP_NODELAY enabled")
        except OSError as e:
            logger.warning(f"Could not optimize AI backend socket: {e}")

    async def configure(self, message: SessionConfigureMessage) -> None:
        await self._send_json(message.model_dump())

    async def wait_ready(self, timeout: float) -> None:
        """
        Wait for the backend to acknowledge the session configuration.

        Raises:
            SessionUnavailable: on timeout, backend error or closed connection
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise SessionUnavailable(f"AI backend not ready after {timeout:.1f}s")
        if self._ready_error:
            raise SessionUnavailable(self._ready_error)

    async def send_audio(self, chunk: bytes) -> None:
        """
        Send raw caller audio to the backend.

        Raises:
            TransportError: if the connection is down or the send times out
        """
        message = AudioInputMessage(audio=base64.b64encode(chunk).decode("utf-8"))
        await self._send_json(message.model_dump())

    async def send_text(self, text: str) -> None:
        await self._send_json(TextInputMessage(text=text).model_dump())

    async def _send_json(self, payload: dict) -> None:
        if not self.connected or self.ws is None:
            raise TransportError("AI session connection not active")
        try:
            await asyncio.wait_for(self.ws.send(json.dumps(payload)), timeout=SEND_TIMEOUT)
        except asyncio.TimeoutError:
            self._connection_active = False
            raise TransportError("Timeout sending to AI backend")
        except ConnectionClosed as e:
            self._connection_active = False
            raise TransportError(f"AI backend connection closed: {e}") from e

    async def receive(self) -> Optional[InboundMessage]:
        """
        Await the next inbound message.

        Returns:
            The next typed message, or None once the client has been closed

        Raises:
            TransportError: if the connection was lost
        """
        if self._is_closing and self.inbound_queue.empty():
            return None
        item = await self.inbound_queue.get()
        if isinstance(item, _TransportLost):
            raise TransportError(item.reason)
        return item

    async def _recv_loop(self) -> None:
        """Read frames from the backend and queue the ones the engine consumes."""
        reason = "AI backend connection lost"
        try:
            async for raw in self.ws:
                self.last_activity = time.monotonic()
                if isinstance(raw, bytes):
                    logger.debug(f"Ignoring binary frame of {len(raw)} bytes from AI backend")
                    continue
                try:
                    message = parse_inbound(json.loads(raw))
                except json.JSONDecodeError:
                    logger.warning(f"Received invalid JSON: {raw[:100]}...")
                    continue
                except ValidationError as e:
                    logger.warning(f"Malformed message from AI backend: {e}")
                    continue
                if message is None:
                    continue

                if isinstance(message, SessionReadyMessage):
                    self.session_id = message.session_id
                    self._ready.set()
                    continue
                if isinstance(message, SessionErrorMessage) and not self._ready.is_set():
                    self._ready_error = f"AI backend error: {message.message}"
                    self._ready.set()

                await self.inbound_queue.put(message)
            reason = "AI backend closed the connection"
        except ConnectionClosedOK:
            reason = "AI backend closed the connection"
        except ConnectionClosedError as e:
            logger.warning(f"AI backend connection closed unexpectedly: {e}")
        except asyncio.CancelledError:
            raise
        finally:
            self._connection_active = False
            if not self._ready.is_set():
                self._ready_error = reason
                self._ready.set()

        if not self._is_closing:
            logger.info(f"Receive loop exited: {reason}")
            await self.inbound_queue.put(_TransportLost(reason))

    async def close(self) -> None:
        """Close the WebSocket connection and cancel the receive loop. Idempotent."""
        if self._is_closing:
            return
        self._is_closing = True
        self._connection_active = False

        if self._recv_task:
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass

        if self.ws:
            try:
                await self.ws.close()
            except (OSError, ConnectionClosed) as e:
                logger.debug(f"Error closing AI backend socket: {e}")
        logger.info("AI session client closed")
