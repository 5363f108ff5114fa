"""Mail adapter: a mail-shaped API over ``ConnectionTransport``.

Handles:
- Identity handshake (``set_identity`` on every connect, cached reply
  from ``identity_confirmed``)
- Outbound mail as fire-and-forget ``mail`` frames
- Inbound classification of ``mail``, ``mail_notification`` and
  ``identity_confirmed`` frames, with fan-out of mail to subscribers

Mail replies never reuse the transport message id, so this layer does
not use the transport's id correlation. Reply matching lives in
``ResponseCorrelator``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..constants import DEFAULT_UI_AGENT_EMAIL
from ..errors import ConnectionLost, NotConnected
from ..observers import ObserverList
from ..protocol.frames import FrameType, identity_frame
from ..protocol.mail import Mail, generate_message_id
from ..transport.connection import ConnectionTransport

logger = logging.getLogger(__name__)

MailCallback = Callable[[Mail], Any]


class MailAdapter:
    """Publish/subscribe mail interface over a connection transport."""

    def __init__(
        self,
        transport: ConnectionTransport,
        default_from: str | None = None,
        user_email: str | None = None,
    ):
        self._transport = transport
        self._default_from = default_from or transport.config.default_from
        self._user_email: str | None = None
        self._ui_agent_email: str | None = None
        self._identity_event = asyncio.Event()

        self._mail_observers = ObserverList("mail")
        self._identity_observers = ObserverList("identity")

        if user_email:
            self.set_user_email(user_email)

        transport.on_connected.add(self._on_connected)
        transport.on_message.add(self._on_message)

    @property
    def transport(self) -> ConnectionTransport:
        return self._transport

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def user_email(self) -> str | None:
        return self._user_email

    @property
    def ui_agent_email(self) -> str | None:
        return self._ui_agent_email

    @property
    def default_from(self) -> str:
        return self._default_from

    @property
    def identity_confirmed(self) -> bool:
        return self._identity_event.is_set()

    def set_user_email(self, email: str) -> None:
        self._user_email = email
        self._default_from = email

    def set_ui_agent_email(self, email: str) -> None:
        self._ui_agent_email = email

    async def wait_for_identity(self, timeout: float | None = None) -> str | None:
        """Wait until the backend has confirmed our identity.

        Returns:
            The confirmed user address

        Raises:
            TimeoutError: If no confirmation arrives within ``timeout``
        """
        await asyncio.wait_for(self._identity_event.wait(), timeout=timeout)
        return self._user_email

    def on_identity(self, callback: Callable[[str | None, str | None], Any]) -> Callable[[], None]:
        """Subscribe to identity confirmations ``(user_email, ui_agent_email)``."""
        return self._identity_observers.add(callback)

    async def send_identity(self) -> None:
        """Announce the currently known user address (possibly empty)."""
        frame = identity_frame(self._user_email)
        logger.debug(f"Sending identity message: {frame}")
        await self._transport.send_frame(frame)

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_mail(self, mail: Mail) -> Mail:
        """Transmit a mail frame.

        Raises:
            NotConnected: If the socket is not open
        """
        envelope = mail.to_envelope()
        logger.debug(f"Sending mail {mail.message_id}: {mail.subject} to {mail.to_address}")
        await self._transport.send_frame(envelope)
        return mail

    async def send_mail_to(
        self,
        to: str | None,
        subject: str,
        body: Any,
        *,
        in_reply_to: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        message_id: str | None = None,
    ) -> Mail:
        """Build a mail and send it.

        Args:
            to: Recipient; ``None`` targets the UI agent mailbox
            subject: Subject line
            body: Mail body
            in_reply_to: Message-ID this mail answers
            headers: Extra headers
            timeout: Deadline for the send itself (not a reply wait)
            message_id: Explicit Message-ID (generated when omitted)

        Raises:
            NotConnected: If the socket is not open
            TimeoutError: If the send does not complete within ``timeout``
        """
        mail = Mail(
            message_id=message_id or generate_message_id(),
            from_address=self._default_from,
            to_address=to or self.ui_agent_address(),
            subject=subject,
            body=body,
            headers=headers or {},
            in_reply_to=in_reply_to,
        )

        if timeout is None:
            return await self.send_mail(mail)

        try:
            return await asyncio.wait_for(self.send_mail(mail), timeout=timeout)
        except TimeoutError as e:
            raise TimeoutError(f"Mail timeout: {subject}") from e

    def ui_agent_address(self) -> str:
        """Cached UI agent mailbox, or the default one before confirmation."""
        return self._ui_agent_email or DEFAULT_UI_AGENT_EMAIL

    # =========================================================================
    # Subscribers
    # =========================================================================

    def on_mail(self, callback: MailCallback) -> Callable[[], None]:
        """Subscribe to inbound mail. Returns an unsubscribe function."""
        return self._mail_observers.add(callback)

    def off_mail(self, callback: MailCallback) -> bool:
        return self._mail_observers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._mail_observers)

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _on_connected(self) -> None:
        # Always announce, even without an address; the server answers with
        # the authoritative one.
        self._identity_event.clear()
        try:
            await self.send_identity()
        except (NotConnected, ConnectionLost) as e:
            logger.error(f"Identity message not sent: {e}")

    async def _on_message(self, frame: dict[str, Any]) -> None:
        frame_type = frame.get("type")

        if frame_type in (FrameType.MAIL.value, FrameType.MAIL_NOTIFICATION.value):
            try:
                if frame_type == FrameType.MAIL.value:
                    if not isinstance(frame.get("mail"), dict):
                        raise ValueError("mail frame without a mail object")
                    mail = Mail.from_envelope(frame)
                else:
                    mail = Mail.from_notification(frame)
            except ValueError as e:
                logger.warning(f"Dropping invalid {frame_type} frame: {e}")
                return
            await self._emit_mail(mail)
        elif frame_type == FrameType.IDENTITY_CONFIRMED.value:
            await self._confirm_identity(frame)
        else:
            logger.debug(f"Unhandled message: {str(frame)[:200]}")

    async def _confirm_identity(self, frame: dict[str, Any]) -> None:
        if email := frame.get("email_address"):
            self.set_user_email(email)
            logger.info(f"Identity confirmed: {email}")
        if ui_agent := frame.get("ui_agent_email"):
            self._ui_agent_email = ui_agent
            logger.info(f"UI agent: {ui_agent}")

        self._identity_event.set()
        await self._identity_observers.notify(self._user_email, self._ui_agent_email)

    async def _emit_mail(self, mail: Mail) -> None:
        logger.debug(f"Received mail {mail.message_id}: {mail.subject} from {mail.from_address}")
        await self._mail_observers.notify(mail)
