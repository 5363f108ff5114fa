"""Reply correlation for mail.

Mail replies never reuse the transport message id, so a reply is matched
to its request by mail headers instead:

1. ``in_reply_to`` equal to the Message-ID we sent (always preferred)
2. Otherwise a subject heuristic: ``"Response: {subject}"``,
   ``"Re: {subject}"`` or any subject containing ``{subject}``; a compiled
   pattern is matched with ``search`` instead

Rule 2 is fuzzy. With several waits pending, one inbound mail may satisfy
more than one of them; exact matches are tried across all waits first,
then the heuristic in registration order, and the first match wins.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any

from ..errors import ConnectionLost, RequestTimeout
from ..protocol.mail import Mail, generate_message_id
from .adapter import MailAdapter

logger = logging.getLogger(__name__)

SubjectMatcher = str | re.Pattern[str]


def is_response(mail: Mail, message_id: str, expected_subject: SubjectMatcher) -> bool:
    """Check whether ``mail`` answers the mail sent as ``message_id``."""
    if mail.in_reply_to == message_id:
        return True

    subject = mail.subject or ""
    if isinstance(expected_subject, str):
        return (
            subject == f"Response: {expected_subject}"
            or subject == f"Re: {expected_subject}"
            or expected_subject in subject
        )
    return expected_subject.search(subject) is not None


@dataclass
class ReplyWait:
    """One caller waiting for the reply to a sent mail."""

    message_id: str
    subject: str
    expected_subject: SubjectMatcher
    future: asyncio.Future[Mail]

    def matches_exactly(self, mail: Mail) -> bool:
        return mail.in_reply_to == self.message_id

    def matches(self, mail: Mail) -> bool:
        return is_response(mail, self.message_id, self.expected_subject)


class ResponseCorrelator:
    """Send mail and wait for the reply.

    Args:
        adapter: Mail adapter used for sending
        attach: Subscribe ``resolve`` to the adapter's inbound mail.
            Pass False when the owner routes mail to ``resolve`` itself.
        default_timeout: Reply deadline in seconds
            (default: the transport's ``operation_timeout``)
    """

    def __init__(
        self,
        adapter: MailAdapter,
        attach: bool = True,
        default_timeout: float | None = None,
    ):
        self._adapter = adapter
        self._default_timeout = default_timeout
        self._waits: list[ReplyWait] = []

        if attach:
            adapter.on_mail(self.resolve)
        adapter.transport.on_disconnected.add(self._on_disconnected)

    @property
    def default_timeout(self) -> float:
        if self._default_timeout is not None:
            return self._default_timeout
        return self._adapter.transport.config.operation_timeout

    @property
    def pending_count(self) -> int:
        return len(self._waits)

    async def send_and_wait(
        self,
        to: str | None,
        subject: str,
        body: Any,
        *,
        timeout: float | None = None,
        in_reply_to: str | None = None,
        headers: dict[str, str] | None = None,
        expect_subject: SubjectMatcher | None = None,
    ) -> Mail:
        """Send a mail and wait for the mail that answers it.

        Args:
            to: Recipient (``None`` targets the UI agent)
            subject: Subject line, also the default reply heuristic
            body: Mail body
            timeout: Seconds allowed for the send and the reply together
            in_reply_to: Message-ID this mail itself answers
            headers: Extra headers
            expect_subject: Subject string or pattern to match replies against

        Returns:
            The reply mail

        Raises:
            NotConnected: If the mail could not be sent
            RequestTimeout: If no reply arrives in time
            ConnectionLost: If the connection drops while waiting
        """
        if timeout is None:
            timeout = self.default_timeout
        loop = asyncio.get_running_loop()
        # One budget covers the send and the reply wait
        deadline = loop.time() + timeout
        wait = ReplyWait(
            message_id=generate_message_id(),
            subject=subject,
            expected_subject=expect_subject if expect_subject is not None else subject,
            future=loop.create_future(),
        )
        # Registered before sending so a fast reply cannot be missed
        self._waits.append(wait)

        try:
            await self._adapter.send_mail_to(
                to,
                subject,
                body,
                in_reply_to=in_reply_to,
                headers=headers,
                timeout=timeout,
                message_id=wait.message_id,
            )
            remaining = max(0.0, deadline - loop.time())
            logger.debug(f"Waiting up to {remaining:.3f}s for reply to {wait.message_id} ({subject})")
            return await asyncio.wait_for(wait.future, timeout=remaining)
        except TimeoutError as e:
            logger.warning(f"No reply to {wait.message_id} within {timeout}s: {subject}")
            raise RequestTimeout(f"Request timeout: {subject}") from e
        finally:
            if wait in self._waits:
                self._waits.remove(wait)

    def resolve(self, mail: Mail) -> bool:
        """Hand an inbound mail to the first wait it answers.

        Returns:
            True if the mail resolved a wait
        """
        waits = [w for w in self._waits if not w.future.done()]
        match = next((w for w in waits if w.matches_exactly(mail)), None)
        if match is None:
            match = next((w for w in waits if w.matches(mail)), None)
        if match is None:
            return False

        self._waits.remove(match)
        match.future.set_result(mail)
        logger.debug(f"Mail {mail.message_id} resolved reply wait for {match.message_id}")
        return True

    def cancel_all(self, error: Exception | None = None) -> None:
        """Fail every outstanding wait."""
        waits, self._waits = self._waits, []
        for wait in waits:
            if not wait.future.done():
                wait.future.set_exception(
                    error or ConnectionLost(f"Reply wait cancelled: {wait.subject}")
                )

    def _on_disconnected(self) -> None:
        waits, self._waits = self._waits, []
        for wait in waits:
            if not wait.future.done():
                wait.future.set_exception(
                    ConnectionLost(f"Connection lost while waiting for reply: {wait.subject}")
                )
