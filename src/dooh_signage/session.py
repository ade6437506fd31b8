"""
WebSocket session with the analysis backend.

The session owns the only socket to the backend. It turns inbound text frames
into typed messages for its listeners and re-opens the socket after an
involuntary close.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from .api.schemas import InboundMessage, OutboundMessage, ProtocolError, UnknownMessage, parse_inbound

LOGGER = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


@dataclass(frozen=True, slots=True)
class StatusChanged:
    connected: bool


@dataclass(frozen=True, slots=True)
class SessionError:
    message: Optional[str]


@dataclass(frozen=True, slots=True)
class ReconnectScheduled:
    attempt: int
    delay: float


SessionEvent = Union[StatusChanged, SessionError, ReconnectScheduled, InboundMessage]
SessionListener = Callable[[SessionEvent], None]
Connector = Callable[[str], Awaitable[Any]]


async def _default_connector(url: str) -> Any:
    return await websockets.connect(url, max_size=None)


class ConnectionSession:
    """Maintains at most one logical connection to the backend stream endpoint."""

    def __init__(
        self,
        url: str,
        reconnect_delay: float = 3.0,
        max_reconnect_attempts: Optional[int] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self._connector = connector or _default_connector
        self._state = ConnectionState.DISCONNECTED
        self._connection: Any = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[SessionListener] = []
        self._enabled = False
        self._connect_pending = False
        self.reconnect_attempts = 0
        self.connections_opened = 0
        self.error: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN and self._connection is not None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def connect(self) -> None:
        self._enabled = True
        self._open()

    def _open(self) -> None:
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            LOGGER.debug("Session already %s, skipping connect", self._state.value)
            return
        if self._state is ConnectionState.CLOSING:
            # reopened by _handle_close once the current socket is gone
            LOGGER.debug("Session closing, connecting after the close completes")
            self._connect_pending = True
            return
        self._cancel_reconnect()
        self._state = ConnectionState.CONNECTING
        LOGGER.info("Connecting to %s", self.url)
        self._task = asyncio.create_task(self._run(), name="signage-session")

    async def disconnect(self) -> None:
        """Close deliberately; the normal closure code suppresses reconnection."""
        self._enabled = False
        self._connect_pending = False
        self._cancel_reconnect()
        task = self._task
        connection = self._connection
        if connection is not None:
            LOGGER.info("Closing WebSocket connection")
            self._state = ConnectionState.CLOSING
            try:
                await connection.close(code=NORMAL_CLOSURE, reason="Client disabled")
            except Exception:
                LOGGER.debug("Error while closing WebSocket", exc_info=True)
        elif task is not None and not task.done():
            self._state = ConnectionState.CLOSING
            task.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        # a connect() issued while closing owns the session from here on
        if self._task is task and self._state is not ConnectionState.DISCONNECTED:
            self._connection = None
            self._set_disconnected()

    async def send(self, message: OutboundMessage) -> bool:
        """Send if open; never buffers. Returns whether the message went out."""
        connection = self._connection
        if self._state is not ConnectionState.OPEN or connection is None:
            return False
        try:
            await connection.send(message.model_dump_json())
        except ConnectionClosed:
            LOGGER.warning("WebSocket closed while sending '%s'", message.type)
            return False
        return True

    def _owns_session(self) -> bool:
        return self._task is asyncio.current_task()

    async def _run(self) -> None:
        try:
            connection = await self._connector(self.url)
        except asyncio.CancelledError:
            if self._owns_session():
                self._set_disconnected()
                self._resume_pending_connect()
            raise
        except Exception as exc:
            LOGGER.error("WebSocket connection to %s failed: %s", self.url, exc)
            if self._owns_session():
                self._set_error("WebSocket connection failed")
                self._handle_close(ABNORMAL_CLOSURE)
            return

        if not self._owns_session():
            await connection.close(code=NORMAL_CLOSURE, reason="Superseded")
            return

        self._connection = connection
        self._state = ConnectionState.OPEN
        self.connections_opened += 1
        self.reconnect_attempts = 0
        LOGGER.info("Connected to %s", self.url)
        self._set_error(None)
        self._emit(StatusChanged(connected=True))

        try:
            async for raw in connection:
                self._handle_raw(raw)
        except ConnectionClosed:
            pass
        except asyncio.CancelledError:
            if self._owns_session():
                self._connection = None
                self._set_disconnected()
            raise
        except Exception:
            LOGGER.exception("WebSocket receive loop failed")
            self._set_error("WebSocket connection failed")

        if not self._owns_session():
            return
        code = getattr(connection, "close_code", None)
        self._connection = None
        if code is None:
            deliberate = not self._enabled or self._state is ConnectionState.CLOSING
            code = NORMAL_CLOSURE if deliberate else ABNORMAL_CLOSURE
        if code != NORMAL_CLOSURE:
            self._set_error("WebSocket connection failed")
        self._handle_close(code)

    def _handle_raw(self, raw: Any) -> None:
        try:
            message = parse_inbound(raw)
        except ProtocolError as exc:
            LOGGER.warning("Dropping malformed WebSocket message: %s", exc)
            return
        if isinstance(message, UnknownMessage):
            LOGGER.debug("Ignoring unknown message type '%s'", message.type)
        self._emit(message)

    def _handle_close(self, code: int) -> None:
        LOGGER.info("WebSocket disconnected (code=%s)", code)
        self._set_disconnected()
        if self._resume_pending_connect():
            return
        if code == NORMAL_CLOSURE or not self._enabled:
            return
        if (
            self.max_reconnect_attempts is not None
            and self.reconnect_attempts >= self.max_reconnect_attempts
        ):
            LOGGER.error("Giving up after %d reconnect attempts", self.reconnect_attempts)
            self._set_error("Reconnect attempts exhausted")
            return
        self.reconnect_attempts += 1
        LOGGER.info("Auto-reconnecting in %.1fs (attempt %d)", self.reconnect_delay, self.reconnect_attempts)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._fire_reconnect)
        self._emit(ReconnectScheduled(attempt=self.reconnect_attempts, delay=self.reconnect_delay))

    def _resume_pending_connect(self) -> bool:
        pending, self._connect_pending = self._connect_pending, False
        if not pending or not self._enabled:
            return False
        LOGGER.info("Reopening session requested while closing")
        self._open()
        return True

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._enabled:
            self._open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _set_disconnected(self) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        self._emit(StatusChanged(connected=False))

    def _set_error(self, message: Optional[str]) -> None:
        self.error = message
        self._emit(SessionError(message))

    def _emit(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                LOGGER.exception("Session listener failed for %s", type(event).__name__)
