"""Wire frames exchanged over the duplex socket.

Every frame is one JSON object. Two families share the socket:

- Generic request/response envelopes, correlated by ``id``:
    {"id": "msg_abc123", "type": "status", "payload": {...}}
    {"id": "msg_abc123", "success": true, "payload": {...}}

- Typed mail-layer frames, distinguished by ``type``:
    {"type": "set_identity", "email_address": "..."}
    {"type": "identity_confirmed", "email_address": "...", "ui_agent_email": "..."}
    {"type": "mail", "mail": {"headers": {...}, "body": "..."}}
    {"type": "mail_notification", "message_id": "...", "from": "...", ...}
    {"type": "heartbeat", "timestamp": "..."}
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ..errors import MalformedFrame


def generate_id() -> str:
    """Generate a transport message id."""
    return f"msg_{uuid.uuid4().hex[:12]}"


def utc_now() -> str:
    """Current time as an ISO8601 string."""
    return datetime.now(UTC).isoformat()


class FrameType(str, Enum):
    """Mail-layer frame types."""

    # Client -> Server
    SET_IDENTITY = "set_identity"
    HEARTBEAT = "heartbeat"

    # Server -> Client
    IDENTITY_CONFIRMED = "identity_confirmed"
    MAIL_NOTIFICATION = "mail_notification"

    # Both directions
    MAIL = "mail"


class TransportMessage(BaseModel):
    """Outbound request envelope.

    The server answers with a frame carrying the same ``id``.
    """

    id: str = Field(default_factory=generate_id)
    type: str
    payload: Any = None
    metadata: dict[str, Any] | None = None

    def to_frame(self) -> dict[str, Any]:
        """Serialize to a wire frame, stamped with the send time."""
        frame = self.model_dump(exclude_none=True)
        frame["timestamp"] = utc_now()
        return frame


class TransportResponse(BaseModel):
    """Reply envelope correlated to a ``TransportMessage`` by ``id``."""

    id: str
    success: bool
    payload: Any = None
    error: str | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_frame(cls, frame: dict[str, Any]) -> TransportResponse:
        """Build a response from a raw reply frame.

        Frames without an explicit ``success: false`` count as successful;
        frames without ``payload`` carry the whole frame as payload.
        """
        error = frame.get("error")
        return cls(
            id=frame["id"],
            success=frame.get("success") is not False,
            payload=frame.get("payload", frame),
            error=str(error) if error is not None else None,
            metadata=frame.get("metadata"),
        )


def parse_frame(data: str | bytes) -> dict[str, Any]:
    """Decode one inbound frame.

    Raises:
        MalformedFrame: If the data is not a JSON object
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"Frame is not valid UTF-8: {e}") from e

    try:
        frame = json.loads(data)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"Frame is not valid JSON: {e}") from e

    if not isinstance(frame, dict):
        raise MalformedFrame(f"Frame is not a JSON object: {type(frame).__name__}")
    return frame


def encode_frame(frame: dict[str, Any]) -> str:
    """Serialize one outbound frame."""
    return json.dumps(frame)


def identity_frame(email_address: str | None) -> dict[str, Any]:
    """Build the identity announcement sent after every connect."""
    return {"type": FrameType.SET_IDENTITY.value, "email_address": email_address or ""}


def heartbeat_frame() -> dict[str, Any]:
    """Application-level liveness probe for sockets without native ping."""
    return {"type": FrameType.HEARTBEAT.value, "timestamp": utc_now()}
