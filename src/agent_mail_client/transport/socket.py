"""Socket capability interface.

The connection engine is written only against ``Socket``; the concrete
implementation is picked once, at construction, through a
``SocketFactory``. ``WebsocketsSocket`` is the production binding on top
of the ``websockets`` asyncio client.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from websockets.asyncio.client import ClientConnection, connect
from websockets.protocol import State

from ..constants import NORMAL_CLOSURE
from ..errors import NotConnected

if TYPE_CHECKING:
    from ..config import ChannelConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class Socket(Protocol):
    """Minimal duplex socket used by ``ConnectionTransport``.

    Implementations must:
    - open/close the underlying connection
    - send text frames
    - yield inbound frames from ``frames()`` until the connection ends
      (normal end of iteration or an exception both mean "closed")
    - answer ``ping()`` once the peer has acknowledged the probe, when
      ``supports_ping`` is true
    """

    supports_ping: bool

    @property
    def is_open(self) -> bool:
        """True while frames can be sent."""
        ...

    async def open(self) -> None:
        """Open the connection. Raises on failure."""
        ...

    async def send(self, data: str) -> None:
        """Send one text frame."""
        ...

    async def ping(self) -> None:
        """Send a protocol-level ping and wait for the pong."""
        ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection."""
        ...

    def frames(self) -> AsyncIterator[str | bytes]:
        """Yield inbound frames until the connection closes."""
        ...


SocketFactory = Callable[["ChannelConfig"], Socket]


class WebsocketsSocket:
    """``Socket`` backed by ``websockets``.

    Keep-alive pings are disabled in the library; ``ConnectionTransport``
    runs its own heartbeat so liveness failures go through one code path.
    """

    supports_ping = True

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        subprotocols: list[str] | None = None,
    ):
        self.url = url
        self.headers = headers or {}
        self.subprotocols = subprotocols
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is State.OPEN

    async def open(self) -> None:
        self._ws = await connect(
            self.url,
            additional_headers=self.headers or None,
            subprotocols=self.subprotocols,
            ping_interval=None,
            open_timeout=None,
        )
        logger.info(f"WebSocket connected to {self.url}")

    async def send(self, data: str) -> None:
        if not self._ws:
            raise NotConnected("WebSocket not connected")
        await self._ws.send(data)

    async def ping(self) -> None:
        if not self._ws:
            raise NotConnected("WebSocket not connected")
        pong_waiter = await self._ws.ping()
        await pong_waiter

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._ws:
            ws, self._ws = self._ws, None
            await ws.close(code, reason)

    async def frames(self) -> AsyncIterator[str | bytes]:
        if not self._ws:
            raise NotConnected("WebSocket not connected")
        async for data in self._ws:
            yield data


def websocket_factory(config: ChannelConfig) -> Socket:
    """Default ``SocketFactory``: a ``websockets`` connection to ``config.url``."""
    return WebsocketsSocket(
        config.url,
        headers=config.headers,
        subprotocols=config.subprotocols,
    )
