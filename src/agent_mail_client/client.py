"""Mail client: the assembled channel.

Wires the pieces together:

    SendQueue -> MailAdapter -> ConnectionTransport -> socket
                     |
    inbound mail ----+--> ResponseCorrelator (replies to our requests)
                     +--> HandlerRegistry    (everything else)

Usage:
    async with create_client() as client:
        await client.send("agent@example.org", "Hello", "Hi there")
        reply = await client.request("List projects", "{}")
        projects = client.decode(reply)

    # Testing
    client = create_test_client()
    await client.connect()
    client.transport.socket_factory.current.inject({...})
"""

from __future__ import annotations

import logging
from typing import Any

from .config import ChannelConfig
from .constants import DEFAULT_FROM_ADDRESS, DEFAULT_UI_AGENT_EMAIL
from .errors import DuplicateRejected, RequestTimeout
from .handlers.decoder import Decoder, ResponseDecoder
from .handlers.registry import HandlerRegistry
from .mail.adapter import MailAdapter
from .mail.correlation import ResponseCorrelator, SubjectMatcher
from .mail.queue import SendQueue
from .protocol.frames import FrameType
from .protocol.mail import Mail
from .transport.connection import ConnectionTransport
from .transport.mock import MockSocketFactory

logger = logging.getLogger(__name__)


class MailClient:
    """High-level mail channel client.

    Args:
        transport: Connection transport to run on
        queue: Outbound send queue (a default one is created if omitted)
        handlers: Registry for inbound mail not claimed by a reply wait
        decoder: Body decoder used by ``decode``
        user_email: Address to announce before the backend confirms one
        ui_agent_email: UI agent mailbox to use before the backend names one
    """

    def __init__(
        self,
        transport: ConnectionTransport,
        queue: SendQueue | None = None,
        handlers: HandlerRegistry | None = None,
        decoder: Decoder | None = None,
        user_email: str | None = None,
        ui_agent_email: str | None = None,
    ):
        self._transport = transport
        self.adapter = MailAdapter(transport, user_email=user_email)
        if ui_agent_email:
            self.adapter.set_ui_agent_email(ui_agent_email)

        self.correlator = ResponseCorrelator(self.adapter, attach=False)
        self.queue = queue or SendQueue()
        self.handlers = handlers or HandlerRegistry()
        self.decoder: Decoder = decoder or ResponseDecoder()

        self.adapter.on_mail(self._route_mail)
        # Registered after the adapter, so identity goes out before queued mail
        transport.on_connected.add(self._on_connected)

    @property
    def transport(self) -> ConnectionTransport:
        return self._transport

    @property
    def config(self) -> ChannelConfig:
        return self._transport.config

    @property
    def is_connected(self) -> bool:
        return self._transport.is_connected

    @property
    def user_email(self) -> str | None:
        return self.adapter.user_email

    @property
    def ui_agent_email(self) -> str:
        return self.adapter.ui_agent_address()

    def set_ui_agent_email(self, email: str) -> None:
        self.adapter.set_ui_agent_email(email)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Connect the transport and start the queue's dedup sweep."""
        self.queue.start()
        await self._transport.connect()

    async def disconnect(self) -> None:
        """Disconnect and stop the queue. Queued mail is discarded."""
        await self._transport.disconnect()
        pending = self.queue.size()
        if pending:
            logger.warning(f"Discarding {pending} queued mail(s) on disconnect")
        await self.queue.close()

    async def ensure_connected(self) -> None:
        if not self._transport.is_connected:
            await self.connect()

    async def ensure_authenticated(self, timeout: float | None = None) -> str | None:
        """Connect if needed and wait for the backend to confirm our identity.

        Returns:
            The confirmed user address

        Raises:
            ConnectFailed: If the connection cannot be opened
            RequestTimeout: If no identity confirmation arrives in time
        """
        await self.ensure_connected()
        if self.adapter.identity_confirmed:
            return self.adapter.user_email

        timeout = timeout or self.config.connect_timeout
        try:
            return await self.adapter.wait_for_identity(timeout)
        except TimeoutError as e:
            raise RequestTimeout(f"Identity not confirmed within {timeout}s") from e

    async def __aenter__(self) -> MailClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(
        self,
        to: str | None,
        subject: str,
        body: str,
        headers: dict[str, str] | None = None,
        strict: bool = False,
    ) -> str | None:
        """Queue a mail and send whatever the queue holds.

        Mail that cannot be sent now stays queued and goes out on the next
        (re)connect, up to the queue's attempt limit.

        Args:
            to: Recipient (``None`` targets the UI agent)
            subject: Subject line
            body: Mail body
            headers: Extra headers
            strict: Raise instead of returning None for a duplicate

        Returns:
            Queue id, or None if the mail was suppressed as a duplicate

        Raises:
            DuplicateRejected: For a duplicate when ``strict`` is set
        """
        self.queue.start()
        recipient = to or self.adapter.ui_agent_address()
        queue_id = self.queue.enqueue(recipient, subject, body, headers)
        if queue_id is None:
            if strict:
                raise DuplicateRejected(recipient, subject)
            return None

        if self._transport.is_connected:
            await self.flush()
        else:
            logger.info(f"Not connected, mail queued: {subject} to {recipient}")
        return queue_id

    async def flush(self) -> int:
        """Send queued mail in order until the queue is empty or a send fails.

        Returns:
            Number of mails sent
        """
        sent = 0
        while (item := self.queue.dequeue()) is not None:
            try:
                await self.adapter.send_mail_to(
                    item.to, item.subject, item.body, headers=item.headers
                )
            except ConnectionError as e:
                logger.warning(f"Send failed for {item.subject} to {item.to}: {e}")
                self.queue.requeue(item)
                break
            sent += 1
        return sent

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
        """Send a mail directly (no queue) and wait for its reply."""
        await self.ensure_connected()
        return await self.correlator.send_and_wait(
            to,
            subject,
            body,
            timeout=timeout,
            in_reply_to=in_reply_to,
            headers=headers,
            expect_subject=expect_subject,
        )

    async def request(
        self,
        subject: str,
        body: Any,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        expect_subject: SubjectMatcher | None = None,
    ) -> Mail:
        """Send a mail to the UI agent and wait for its reply.

        Waits for the identity handshake first, so the UI agent address is
        the one the backend assigned.
        """
        await self.ensure_authenticated()
        return await self.correlator.send_and_wait(
            self.adapter.ui_agent_address(),
            subject,
            body,
            timeout=timeout,
            headers=headers,
            expect_subject=expect_subject,
        )

    # =========================================================================
    # Replies
    # =========================================================================

    def decode(self, mail: Mail) -> Any:
        return self.decoder.decode(mail)

    @staticmethod
    def is_success_response(mail: Mail) -> bool:
        return ResponseDecoder.extract_success(mail)

    @staticmethod
    def extract_error(mail: Mail) -> str | None:
        return ResponseDecoder.extract_error(mail)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _route_mail(self, mail: Mail) -> None:
        if self.correlator.resolve(mail):
            return
        results = await self.handlers.process(mail)
        if not any(r.ok for r in results):
            logger.debug(f"No handler claimed mail {mail.message_id}: {mail.subject}")

    async def _on_connected(self) -> None:
        if not self.queue.is_empty():
            logger.info(f"Connected, flushing {self.queue.size()} queued mail(s)")
            await self.flush()


# Factory functions


def create_client(
    config: ChannelConfig | None = None,
    **overrides: Any,
) -> MailClient:
    """Create a client for a real backend.

    Args:
        config: Channel configuration (default: from ``AGENT_MAIL_*`` env vars)
        **overrides: Config fields to replace

    Returns:
        MailClient over a websockets connection
    """
    config = config or ChannelConfig.from_env()
    if overrides:
        config = config.with_overrides(**overrides)
    for problem in config.validate():
        logger.warning(f"Configuration problem: {problem}")
    return MailClient(ConnectionTransport(config))


def _confirm_identity(frame: dict[str, Any]) -> list[dict[str, Any]] | None:
    if frame.get("type") != FrameType.SET_IDENTITY.value:
        return None
    return [
        {
            "type": FrameType.IDENTITY_CONFIRMED.value,
            "email_address": frame.get("email_address") or DEFAULT_FROM_ADDRESS,
            "ui_agent_email": DEFAULT_UI_AGENT_EMAIL,
        }
    ]


def create_test_client(
    factory: MockSocketFactory | None = None,
    config: ChannelConfig | None = None,
) -> MailClient:
    """Create a client over in-memory sockets.

    The default mock backend confirms every identity announcement. Access
    the sockets through ``client.transport.socket_factory``.

    Args:
        factory: Pre-configured socket factory (creates one if None)
        config: Configuration (default: fast timers, no heartbeat traffic)
    """
    config = config or ChannelConfig(
        url="ws://mock/ws",
        timeout=1.0,
        connect_timeout=1.0,
        operation_timeout=1.0,
        heartbeat_interval=3600.0,
        reconnect_interval=0.01,
    )
    factory = factory or MockSocketFactory(responder=_confirm_identity)
    return MailClient(ConnectionTransport(config, socket_factory=factory))
