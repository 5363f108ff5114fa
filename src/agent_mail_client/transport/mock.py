"""In-memory socket for tests and offline development.

No actual I/O - frames are queued in memory.

Usage:
    factory = MockSocketFactory()
    transport = ConnectionTransport(config, socket_factory=factory)
    await transport.connect()

    factory.current.inject({"type": "identity_confirmed", ...})
    assert factory.current.sent[0]["type"] == "set_identity"
    factory.current.drop()   # simulate the server going away
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

from ..constants import NORMAL_CLOSURE
from ..errors import NotConnected

if TYPE_CHECKING:
    from ..config import ChannelConfig

# Returns the frames the fake server sends back for one client frame
Responder = Callable[[dict[str, Any]], list[dict[str, Any]] | None]

_CLOSED = object()


class MockSocket:
    """``Socket`` implementation that records sends and replays injected frames."""

    def __init__(
        self,
        fail_open: Exception | None = None,
        open_delay: float = 0.0,
        supports_ping: bool = True,
        answer_pings: bool = True,
        responder: Responder | None = None,
    ):
        self.supports_ping = supports_ping
        self.answer_pings = answer_pings
        self.responder = responder
        self._fail_open = fail_open
        self._open_delay = open_delay
        self._open = False
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.pings = 0
        self.close_code: int | None = None
        self.close_reason: str | None = None

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        if self._open_delay:
            await asyncio.sleep(self._open_delay)
        if self._fail_open is not None:
            raise self._fail_open
        self._open = True

    async def send(self, data: str) -> None:
        if not self._open:
            raise NotConnected("Mock socket not open")
        frame = json.loads(data)
        self.sent.append(frame)
        if self.responder:
            for reply in self.responder(frame) or []:
                self.inject(reply)

    async def ping(self) -> None:
        if not self._open:
            raise NotConnected("Mock socket not open")
        self.pings += 1
        if not self.answer_pings:
            # Never ponged; the caller's heartbeat timeout decides
            await asyncio.Event().wait()

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        self._open = False
        self._inbound.put_nowait(_CLOSED)

    async def frames(self) -> AsyncIterator[str | bytes]:
        while True:
            item = await self._inbound.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    # Test controls

    def inject(self, frame: dict[str, Any] | str | bytes) -> None:
        """Queue an inbound frame (dicts are JSON-encoded)."""
        self._inbound.put_nowait(json.dumps(frame) if isinstance(frame, dict) else frame)

    def drop(self, error: Exception | None = None) -> None:
        """Simulate the remote end closing (or failing with ``error``)."""
        self._open = False
        self._inbound.put_nowait(error if error is not None else _CLOSED)

    def sent_of_type(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self.sent if f.get("type") == frame_type]


class MockSocketFactory:
    """``SocketFactory`` handing out ``MockSocket`` instances.

    Keeps every socket it created so tests can inspect earlier connections.
    """

    def __init__(self, **socket_kwargs: Any):
        self.socket_kwargs = socket_kwargs
        self.sockets: list[MockSocket] = []
        self._failures: list[Exception] = []

    def fail_next(self, count: int = 1, error: Exception | None = None) -> None:
        """Make the next ``count`` opens fail."""
        for _ in range(count):
            self._failures.append(error or ConnectionRefusedError("mock refused"))

    @property
    def current(self) -> MockSocket:
        """Most recently created socket."""
        if not self.sockets:
            raise LookupError("No socket created yet")
        return self.sockets[-1]

    def __call__(self, config: ChannelConfig) -> MockSocket:
        kwargs = dict(self.socket_kwargs)
        if self._failures:
            kwargs["fail_open"] = self._failures.pop(0)
        socket = MockSocket(**kwargs)
        self.sockets.append(socket)
        return socket
