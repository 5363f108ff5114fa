"""Mail domain model and its two wire representations.

Full envelope (both directions):
    {
        "type": "mail",
        "mail": {
            "headers": {"To": "...", "From": "...", "Subject": "...", "Message-ID": "..."},
            "body": "..."
        }
    }

Flattened notification (inbound only):
    {
        "type": "mail_notification",
        "message_id": "...", "from": "...", "to": "...",
        "subject": "...", "body": "...", "timestamp": "...", "in_reply_to": "..."
    }
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..constants import MESSAGE_ID_DOMAIN
from .frames import FrameType, utc_now


def generate_message_id(domain: str = MESSAGE_ID_DOMAIN) -> str:
    """Generate an RFC2822-style Message-ID."""
    return f"<{int(time.time() * 1000)}.{uuid.uuid4().hex[:9]}@{domain}>"


# Canonical header names owned by the envelope
HEADER_TO = "To"
HEADER_FROM = "From"
HEADER_SUBJECT = "Subject"
HEADER_MESSAGE_ID = "Message-ID"
HEADER_IN_REPLY_TO = "In-Reply-To"
HEADER_DATE = "Date"


class Mail(BaseModel):
    """One mail message exchanged with the backend.

    Immutable: build a new instance (``model_copy(update=...)``) instead of
    editing one that has been sent.
    """

    model_config = ConfigDict(frozen=True)

    message_id: str = Field(default_factory=generate_message_id)
    from_address: str
    to_address: str
    subject: str = ""
    body: Any = ""
    headers: dict[str, str] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now)
    in_reply_to: str | None = None

    def to_envelope(self) -> dict[str, Any]:
        """Serialize to the full ``mail`` wire frame."""
        headers = dict(self.headers)
        headers[HEADER_TO] = self.to_address
        headers[HEADER_FROM] = self.from_address
        headers[HEADER_SUBJECT] = self.subject
        headers[HEADER_MESSAGE_ID] = self.message_id
        if self.in_reply_to:
            headers[HEADER_IN_REPLY_TO] = self.in_reply_to

        return {
            "type": FrameType.MAIL.value,
            "mail": {"headers": headers, "body": self.body},
        }

    @classmethod
    def from_envelope(cls, frame: dict[str, Any]) -> Mail:
        """Parse a full ``mail`` frame (or its inner ``mail`` object)."""
        inner = frame.get("mail", frame)
        headers = {str(k): str(v) for k, v in (inner.get("headers") or {}).items()}

        fields: dict[str, Any] = {
            "from_address": headers.get(HEADER_FROM, inner.get("from", "")),
            "to_address": headers.get(HEADER_TO, inner.get("to", "")),
            "subject": headers.get(HEADER_SUBJECT, inner.get("subject", "")),
            "body": inner.get("body", ""),
            "headers": headers,
            "in_reply_to": headers.get(HEADER_IN_REPLY_TO, inner.get("in_reply_to")),
        }
        message_id = headers.get(HEADER_MESSAGE_ID, inner.get("message_id"))
        if message_id:
            fields["message_id"] = message_id
        timestamp = inner.get("timestamp") or headers.get(HEADER_DATE)
        if timestamp:
            fields["timestamp"] = timestamp
        return cls(**fields)

    @classmethod
    def from_notification(cls, frame: dict[str, Any]) -> Mail:
        """Normalize a flattened ``mail_notification`` frame."""
        fields: dict[str, Any] = {
            "from_address": frame.get("from") or "",
            "to_address": frame.get("to") or "",
            "subject": frame.get("subject") or "",
            "body": frame.get("body", ""),
            "in_reply_to": frame.get("in_reply_to"),
        }
        if frame.get("message_id"):
            fields["message_id"] = frame["message_id"]
        if frame.get("timestamp"):
            fields["timestamp"] = frame["timestamp"]
        return cls(**fields)
