"""Agent mail client - resilient asyncio mail channel to an agent backend.

Layers, bottom-up:
- transport: ConnectionTransport over one WebSocket (state machine,
  request/response correlation, heartbeat, reconnection)
- mail: MailAdapter (identity handshake, mail frames), ResponseCorrelator
  (reply matching), SendQueue (dedup and retry buffer)
- handlers: HandlerRegistry (priority-ordered inbound dispatch), decoders
- MailClient: everything wired together

Usage:
    from agent_mail_client import create_client

    async with create_client(url="ws://localhost:8000/ws") as client:
        reply = await client.request("List projects", "{}")
        print(client.decode(reply))
"""

from .client import MailClient, create_client, create_test_client
from .config import ChannelConfig
from .errors import (
    ConnectFailed,
    ConnectionLost,
    DuplicateHandler,
    DuplicateRejected,
    InvalidStateTransition,
    MailChannelError,
    MalformedFrame,
    MaxReconnectAttemptsExceeded,
    NotConnected,
    RequestTimeout,
    TransportClosed,
)
from .handlers import (
    Decoder,
    FunctionMailHandler,
    HandlerRegistry,
    MailHandler,
    MailHandlerResult,
    MailMatcher,
    ResponseDecoder,
)
from .mail import MailAdapter, QueuedMail, ResponseCorrelator, SendQueue, is_response
from .observers import ObserverList
from .protocol import FrameType, Mail, TransportMessage, TransportResponse
from .transport import (
    ConnectionState,
    ConnectionTransport,
    MockSocket,
    MockSocketFactory,
    Socket,
    WebsocketsSocket,
)

__version__ = "0.1.0"

__all__ = [
    # Client (recommended)
    "MailClient",
    "create_client",
    "create_test_client",
    "ChannelConfig",
    # Transport
    "ConnectionState",
    "ConnectionTransport",
    "Socket",
    "WebsocketsSocket",
    "MockSocket",
    "MockSocketFactory",
    # Protocol
    "FrameType",
    "Mail",
    "TransportMessage",
    "TransportResponse",
    # Mail layer
    "MailAdapter",
    "ResponseCorrelator",
    "is_response",
    "SendQueue",
    "QueuedMail",
    # Handlers
    "MailHandler",
    "MailMatcher",
    "MailHandlerResult",
    "FunctionMailHandler",
    "HandlerRegistry",
    "Decoder",
    "ResponseDecoder",
    "ObserverList",
    # Errors
    "MailChannelError",
    "NotConnected",
    "ConnectFailed",
    "ConnectionLost",
    "TransportClosed",
    "MaxReconnectAttemptsExceeded",
    "RequestTimeout",
    "DuplicateRejected",
    "MalformedFrame",
    "InvalidStateTransition",
    "DuplicateHandler",
]
