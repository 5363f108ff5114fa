"""Mail layer: adapter, reply correlation and the outbound send queue."""

from .adapter import MailAdapter
from .correlation import ReplyWait, ResponseCorrelator, is_response
from .queue import QueuedMail, SendQueue, content_hash

__all__ = [
    "MailAdapter",
    "ResponseCorrelator",
    "ReplyWait",
    "is_response",
    "SendQueue",
    "QueuedMail",
    "content_hash",
]
