"""Connection transport: one logical duplex connection that survives drops.

Responsibilities:
- Own the socket and the connection state machine
- Correlate request/response frames by message id (pending table)
- Keep the connection alive with a heartbeat
- Reconnect after unexpected drops, up to a ceiling

State machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTING -> DISCONNECTED
    (any state except ERROR) -> ERROR
    ERROR -> CONNECTING      (explicit connect() only)
    ERROR -> DISCONNECTING   (explicit disconnect())

Every transition is published on ``on_state_change``; entering CONNECTED
and DISCONNECTED is additionally published on ``on_connected`` and
``on_disconnected``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..config import ChannelConfig
from ..constants import NORMAL_CLOSURE
from ..errors import (
    ConnectFailed,
    ConnectionLost,
    InvalidStateTransition,
    MalformedFrame,
    MaxReconnectAttemptsExceeded,
    NotConnected,
    RequestTimeout,
    TransportClosed,
)
from ..observers import ObserverList
from ..protocol.frames import (
    TransportMessage,
    TransportResponse,
    encode_frame,
    heartbeat_frame,
    parse_frame,
)
from .socket import Socket, SocketFactory, websocket_factory

logger = logging.getLogger(__name__)

# How many expired request ids to remember for discarding late replies
EXPIRED_ID_MEMORY = 256


class ConnectionState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"
    ERROR = "error"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.ERROR}
    ),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTING, ConnectionState.ERROR}
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.DISCONNECTING, ConnectionState.ERROR}
    ),
    ConnectionState.DISCONNECTING: frozenset(
        {ConnectionState.DISCONNECTED, ConnectionState.ERROR}
    ),
    ConnectionState.ERROR: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.DISCONNECTING}
    ),
}


@dataclass
class PendingRequest:
    """A sent request waiting for its reply.

    Settles exactly once: the first of resolve/reject wins and cancels the
    deadline timer; later calls are no-ops.
    """

    id: str
    future: asyncio.Future[TransportResponse]
    timer: asyncio.TimerHandle
    deadline: float

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, response: TransportResponse) -> bool:
        self.timer.cancel()
        if self.future.done():
            return False
        self.future.set_result(response)
        return True

    def reject(self, error: BaseException) -> bool:
        self.timer.cancel()
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


class ConnectionTransport:
    """Resilient request/response transport over a single socket.

    Usage:
        transport = ConnectionTransport(ChannelConfig(url="ws://localhost:8000/ws"))
        transport.on_message.add(print)

        async with transport:
            response = await transport.send(TransportMessage(type="status", payload={}))
    """

    def __init__(
        self,
        config: ChannelConfig | None = None,
        socket_factory: SocketFactory | None = None,
    ):
        self.config = config or ChannelConfig()
        self._socket_factory = socket_factory or websocket_factory
        self._state = ConnectionState.DISCONNECTED
        self._socket: Socket | None = None
        self._pending: dict[str, PendingRequest] = {}
        self._expired: deque[str] = deque(maxlen=EXPIRED_ID_MEMORY)
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_attempts = 0
        self._connect_lock = asyncio.Lock()

        self.on_state_change = ObserverList("state_change")
        self.on_connected = ObserverList("connected")
        self.on_disconnected = ObserverList("disconnected")
        self.on_message = ObserverList("message")
        self.on_error = ObserverList("error")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        """Automatic reconnect attempts made since the last explicit connect()."""
        return self._reconnect_attempts

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def socket_factory(self) -> SocketFactory:
        return self._socket_factory

    def get_config(self) -> ChannelConfig:
        """Return a copy of the active configuration."""
        return self.config.with_overrides()

    def update_config(self, **changes: Any) -> None:
        """Replace configuration fields. Takes effect on the next use."""
        self.config = self.config.with_overrides(**changes)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Open the connection.

        No-op while already connecting or connected. An explicit connect
        also resets the reconnect attempt counter, which is the only way out
        of the ERROR state.

        Raises:
            ConnectFailed: If the socket fails to open within connect_timeout
        """
        async with self._connect_lock:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                self._debug("Already connected or connecting")
                return

            await self._cancel_reconnect()
            self._reconnect_attempts = 0

            try:
                await self._open()
            except (ConnectFailed, asyncio.CancelledError):
                if self._state == ConnectionState.CONNECTING:
                    await self._set_state(ConnectionState.ERROR)
                raise

    async def disconnect(self) -> None:
        """Close the connection and reject every pending request."""
        await self._cancel_reconnect()
        if self._state == ConnectionState.DISCONNECTED:
            return

        await self._set_state(ConnectionState.DISCONNECTING)
        await self._cancel_tasks()
        self._reject_all(TransportClosed("Transport disconnected"))

        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket, "Client disconnect")

        await self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Transport disconnected")

    async def __aenter__(self) -> ConnectionTransport:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(
        self,
        message: TransportMessage,
        timeout: float | None = None,
    ) -> TransportResponse:
        """Send a request and wait for the reply carrying the same id.

        Args:
            message: Request envelope (id is generated when not given)
            timeout: Seconds to wait for the reply (default: config.timeout)

        Raises:
            NotConnected: If the transport is not connected
            RequestTimeout: If no reply arrives in time
            ConnectionLost: If the connection drops before the reply
        """
        socket = self._socket
        if self._state != ConnectionState.CONNECTED or socket is None:
            raise NotConnected("Transport not connected")
        if message.id in self._pending:
            raise ValueError(f"Request {message.id} is already pending")

        timeout = self.config.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        future: asyncio.Future[TransportResponse] = loop.create_future()
        timer = loop.call_later(timeout, self._expire, message.id, timeout)
        pending = PendingRequest(
            id=message.id,
            future=future,
            timer=timer,
            deadline=loop.time() + timeout,
        )
        self._pending[message.id] = pending

        try:
            frame = message.to_frame()
            self._debug(f"Sending message: {frame}")
            try:
                await socket.send(encode_frame(frame))
            except Exception as e:
                raise ConnectionLost(f"Failed to send request {message.id}: {e}") from e
            return await future
        finally:
            if self._pending.get(message.id) is pending:
                del self._pending[message.id]
            pending.timer.cancel()

    async def send_frame(self, frame: dict[str, Any]) -> None:
        """Transmit a raw frame without waiting for any reply.

        Raises:
            NotConnected: If the socket is not open
            ConnectionLost: If the socket fails while sending
        """
        socket = self._socket
        if self._state != ConnectionState.CONNECTED or socket is None or not socket.is_open:
            raise NotConnected("WebSocket not connected")
        self._debug(f"Sending frame: {frame}")
        try:
            await socket.send(encode_frame(frame))
        except Exception as e:
            raise ConnectionLost(f"Failed to send {frame.get('type')} frame: {e}") from e

    # =========================================================================
    # Internals: connection management
    # =========================================================================

    async def _set_state(self, state: ConnectionState) -> None:
        old = self._state
        if old == state:
            return
        if state not in _TRANSITIONS[old]:
            raise InvalidStateTransition(f"Illegal transition {old.value} -> {state.value}")

        self._state = state
        self._debug(f"State {old.value} -> {state.value}")

        await self.on_state_change.notify(old, state)
        if state == ConnectionState.CONNECTED:
            await self.on_connected.notify()
        elif state == ConnectionState.DISCONNECTED:
            await self.on_disconnected.notify()

    async def _open(self) -> None:
        """Create a socket, open it, and arm the reader and heartbeat."""
        await self._set_state(ConnectionState.CONNECTING)
        try:
            socket = self._socket_factory(self.config)
        except Exception as e:
            await self.on_error.notify(e)
            raise ConnectFailed(f"Failed to create socket for {self.config.url}: {e}") from e
        self._socket = socket
        self._debug(f"Connecting to {self.config.url}")

        try:
            await asyncio.wait_for(socket.open(), timeout=self.config.connect_timeout)
        except TimeoutError as e:
            await self._abandon_socket(socket)
            raise ConnectFailed(
                f"Connection timeout after {self.config.connect_timeout}s: {self.config.url}"
            ) from e
        except asyncio.CancelledError:
            await self._abandon_socket(socket)
            raise
        except Exception as e:
            await self._abandon_socket(socket)
            logger.error(f"WebSocket error while connecting: {e}")
            await self.on_error.notify(e)
            raise ConnectFailed(f"Failed to connect to {self.config.url}: {e}") from e

        if self._state != ConnectionState.CONNECTING or self._socket is not socket:
            # disconnect() ran while the socket was opening
            await self._abandon_socket(socket)
            raise ConnectFailed("Connection aborted by disconnect")

        self._reader_task = asyncio.create_task(self._read_loop(socket))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(socket))
        await self._set_state(ConnectionState.CONNECTED)
        logger.info(f"Connected to {self.config.url}")

    async def _abandon_socket(self, socket: Socket) -> None:
        if self._socket is socket:
            self._socket = None
        await self._close_socket(socket, "Connect failed")

    async def _close_socket(self, socket: Socket, reason: str) -> None:
        try:
            await socket.close(NORMAL_CLOSURE, reason)
        except Exception as e:
            logger.debug(f"Error closing socket: {e}")

    async def _cancel_tasks(self) -> None:
        """Cancel the reader and heartbeat, except when called from one of them."""
        current = asyncio.current_task()
        tasks = [self._reader_task, self._heartbeat_task]
        self._reader_task = None
        self._heartbeat_task = None

        for task in tasks:
            if task is None or task is current or task.done():
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _handle_connection_lost(self, reason: str) -> None:
        """Tear down after an unexpected close and schedule a reconnect."""
        if self._state != ConnectionState.CONNECTED:
            return

        logger.warning(f"Connection lost: {reason}")
        await self._set_state(ConnectionState.DISCONNECTING)
        await self._cancel_tasks()
        self._reject_all(ConnectionLost(f"Connection lost: {reason}"))

        socket, self._socket = self._socket, None
        if socket is not None:
            await self._close_socket(socket, "Connection lost")

        await self._set_state(ConnectionState.DISCONNECTED)

        if self.config.reconnect:
            await self._schedule_reconnect()

    async def _schedule_reconnect(self) -> None:
        max_attempts = self.config.max_reconnect_attempts
        if self._reconnect_attempts >= max_attempts:
            logger.error(f"Max reconnection attempts reached ({max_attempts})")
            await self._set_state(ConnectionState.ERROR)
            await self.on_error.notify(MaxReconnectAttemptsExceeded(self._reconnect_attempts))
            return

        self._reconnect_attempts += 1
        delay = self.config.reconnect_interval
        logger.info(
            f"Scheduling reconnect attempt {self._reconnect_attempts}/{max_attempts} in {delay}s"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)

        async with self._connect_lock:
            if self._state != ConnectionState.DISCONNECTED:
                return
            try:
                await self._open()
            except ConnectFailed as e:
                if self._state != ConnectionState.CONNECTING:
                    # Aborted by disconnect()
                    return
                logger.warning(f"Reconnect attempt {self._reconnect_attempts} failed: {e}")
                await self._set_state(ConnectionState.DISCONNECTING)
                await self._set_state(ConnectionState.DISCONNECTED)
                await self._schedule_reconnect()
                return
            except asyncio.CancelledError:
                if self._state == ConnectionState.CONNECTING:
                    await self._set_state(ConnectionState.ERROR)
                raise

        logger.info(f"Reconnected after {self._reconnect_attempts} attempt(s)")

    # =========================================================================
    # Internals: frames, requests and liveness
    # =========================================================================

    async def _read_loop(self, socket: Socket) -> None:
        """Deliver inbound frames in arrival order until the socket ends."""
        reason = "closed by peer"
        try:
            async for data in socket.frames():
                await self._handle_frame(data)
        except Exception as e:
            reason = f"socket error: {e}"
            logger.warning(f"WebSocket receive error: {e}")
            await self.on_error.notify(e)

        if self._socket is socket:
            await self._handle_connection_lost(reason)

    async def _handle_frame(self, data: str | bytes) -> None:
        try:
            frame = parse_frame(data)
        except MalformedFrame as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return

        self._debug(f"Received frame: {str(frame)[:200]}")

        frame_id = frame.get("id")
        if isinstance(frame_id, str):
            pending = self._pending.pop(frame_id, None)
            if pending is not None:
                try:
                    pending.resolve(TransportResponse.from_frame(frame))
                except ValueError as e:
                    pending.reject(MalformedFrame(f"Invalid reply for {frame_id}: {e}"))
                return
            if frame_id in self._expired:
                logger.debug(f"Discarding late reply for expired request {frame_id}")
                return

        await self.on_message.notify(frame)

    def _expire(self, request_id: str, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        self._expired.append(request_id)
        pending.reject(RequestTimeout(f"Request {request_id} timed out after {timeout}s"))

    def _reject_all(self, error: Exception) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            request.reject(error)

    async def _heartbeat_loop(self, socket: Socket) -> None:
        """Probe liveness every heartbeat_interval while connected."""
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            try:
                if socket.supports_ping:
                    await asyncio.wait_for(socket.ping(), timeout=self.config.heartbeat_timeout)
                else:
                    await socket.send(encode_frame(heartbeat_frame()))
            except TimeoutError:
                reason = f"no heartbeat reply within {self.config.heartbeat_timeout}s"
            except Exception as e:
                reason = f"heartbeat failed: {e}"
            else:
                continue

            if self._socket is socket:
                await self._handle_connection_lost(reason)
            return

    def _debug(self, message: str) -> None:
        if self.config.debug:
            logger.debug(message)
