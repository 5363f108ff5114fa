"""Connection layer.

- ConnectionTransport: state machine, request/response correlation,
  heartbeat and reconnection over one duplex socket
- Socket / SocketFactory: the socket capability the engine runs on
- WebsocketsSocket: production binding (``websockets``)
- MockSocket / MockSocketFactory: in-memory binding for tests
"""

from .connection import ConnectionState, ConnectionTransport, PendingRequest
from .mock import MockSocket, MockSocketFactory
from .socket import Socket, SocketFactory, WebsocketsSocket, websocket_factory

__all__ = [
    "ConnectionState",
    "ConnectionTransport",
    "PendingRequest",
    "Socket",
    "SocketFactory",
    "WebsocketsSocket",
    "websocket_factory",
    "MockSocket",
    "MockSocketFactory",
]
