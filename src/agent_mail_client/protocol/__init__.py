"""Wire protocol for the mail channel.

Defines the JSON frames carried over the socket:
- Generic request/response envelopes correlated by id
- Mail-layer frames (identity handshake, mail, notifications, heartbeat)
"""

from .frames import (
    FrameType,
    TransportMessage,
    TransportResponse,
    encode_frame,
    generate_id,
    heartbeat_frame,
    identity_frame,
    parse_frame,
)
from .mail import Mail, generate_message_id

__all__ = [
    "FrameType",
    "TransportMessage",
    "TransportResponse",
    "Mail",
    "encode_frame",
    "generate_id",
    "generate_message_id",
    "heartbeat_frame",
    "identity_frame",
    "parse_frame",
]
