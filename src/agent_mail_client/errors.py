"""Error taxonomy for the mail channel.

Transport-level failures reject only the operation they belong to.
Nothing in this module is ever raised into the frame dispatch loop.
"""

from __future__ import annotations


class MailChannelError(Exception):
    """Base class for all mail channel errors."""


class NotConnected(MailChannelError, ConnectionError):
    """Operation attempted while the transport is not connected."""


class ConnectFailed(MailChannelError, ConnectionError):
    """Opening the socket failed or timed out."""


class ConnectionLost(MailChannelError, ConnectionError):
    """Connection dropped while an operation was outstanding."""


class TransportClosed(ConnectionLost):
    """Connection was closed by an explicit disconnect()."""


class MaxReconnectAttemptsExceeded(MailChannelError):
    """Automatic reconnection gave up; an explicit connect() is required."""

    def __init__(self, attempts: int):
        super().__init__(f"Gave up reconnecting after {attempts} attempt(s)")
        self.attempts = attempts


class RequestTimeout(MailChannelError, TimeoutError):
    """No matching reply arrived before the deadline."""


class DuplicateRejected(MailChannelError):
    """Outbound mail suppressed by the send queue's dedup window."""

    def __init__(self, to: str, subject: str):
        super().__init__(f"Duplicate mail rejected: {subject} to {to}")
        self.to = to
        self.subject = subject


class MalformedFrame(MailChannelError, ValueError):
    """Inbound frame could not be decoded as a JSON object."""


class InvalidStateTransition(MailChannelError, RuntimeError):
    """Connection state machine was asked to make an illegal move."""


class DuplicateHandler(MailChannelError, ValueError):
    """A handler with the same id is already registered."""
