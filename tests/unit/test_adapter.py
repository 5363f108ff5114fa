"""Unit tests for the mail adapter."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from agent_mail_client.constants import DEFAULT_UI_AGENT_EMAIL
from agent_mail_client.errors import NotConnected
from agent_mail_client.mail import MailAdapter
from agent_mail_client.protocol import Mail
from agent_mail_client.transport import ConnectionTransport, MockSocketFactory

# =============================================================================
# Identity Handshake Tests
# =============================================================================


class TestIdentityHandshake:
    """Tests for set_identity / identity_confirmed."""

    @pytest.mark.asyncio
    async def test_identity_sent_on_connect(
        self, transport: ConnectionTransport, factory: MockSocketFactory
    ) -> None:
        """Every connect announces identity, even without an address."""
        MailAdapter(transport)

        await transport.connect()

        assert factory.current.sent == [{"type": "set_identity", "email_address": ""}]

    @pytest.mark.asyncio
    async def test_identity_sent_on_reconnect(
        self, transport: ConnectionTransport, factory: MockSocketFactory, wait_until
    ) -> None:
        """The announcement repeats on every reconnect with the known address."""
        MailAdapter(transport, user_email="me@example.org")
        await transport.connect()

        factory.current.drop()
        await wait_until(lambda: len(factory.sockets) == 2 and transport.is_connected)

        assert factory.current.sent_of_type("set_identity") == [
            {"type": "set_identity", "email_address": "me@example.org"}
        ]

    @pytest.mark.asyncio
    async def test_confirmation_cached_and_used_as_default(
        self, transport: ConnectionTransport, factory: MockSocketFactory
    ) -> None:
        """After identity_confirmed, send_mail_to defaults to the UI agent address."""
        adapter = MailAdapter(transport)
        identities: list[tuple[str | None, str | None]] = []
        adapter.on_identity(lambda user, agent: identities.append((user, agent)))
        await transport.connect()

        assert factory.current.sent[0]["type"] == "set_identity"
        factory.current.inject(
            {
                "type": "identity_confirmed",
                "email_address": "me@example.org",
                "ui_agent_email": "ui-agent@example",
            }
        )
        assert await adapter.wait_for_identity(timeout=1.0) == "me@example.org"

        assert adapter.identity_confirmed
        assert adapter.user_email == "me@example.org"
        assert adapter.ui_agent_email == "ui-agent@example"
        assert identities == [("me@example.org", "ui-agent@example")]

        mail = await adapter.send_mail_to(None, "Hello", "body")

        assert mail.to_address == "ui-agent@example"
        assert mail.from_address == "me@example.org"
        headers = factory.current.sent_of_type("mail")[0]["mail"]["headers"]
        assert headers["To"] == "ui-agent@example"
        assert headers["From"] == "me@example.org"

    @pytest.mark.asyncio
    async def test_default_ui_agent_before_confirmation(
        self, transport: ConnectionTransport
    ) -> None:
        adapter = MailAdapter(transport)
        assert adapter.ui_agent_address() == DEFAULT_UI_AGENT_EMAIL

    @pytest.mark.asyncio
    async def test_wait_for_identity_times_out(self, transport: ConnectionTransport) -> None:
        adapter = MailAdapter(transport)
        await transport.connect()

        with pytest.raises(TimeoutError):
            await adapter.wait_for_identity(timeout=0.01)


# =============================================================================
# Sending Tests
# =============================================================================


class TestSending:
    """Tests for outbound mail."""

    @pytest.mark.asyncio
    async def test_send_not_connected(self, transport: ConnectionTransport) -> None:
        adapter = MailAdapter(transport)

        with pytest.raises(NotConnected):
            await adapter.send_mail_to("agent@example.org", "Hi", "there")

    @pytest.mark.asyncio
    async def test_send_mail_to_envelope(
        self, transport: ConnectionTransport, factory: MockSocketFactory
    ) -> None:
        """send_mail_to builds a full envelope with explicit ids and headers."""
        adapter = MailAdapter(transport, default_from="bot@example.org")
        await transport.connect()

        await adapter.send_mail_to(
            "agent@example.org",
            "Status",
            "ping",
            in_reply_to="<0.prev@mindswarm.ai>",
            headers={"X-Trace": "t1"},
            message_id="<1.mine@mindswarm.ai>",
        )

        frame = factory.current.sent_of_type("mail")[0]
        assert frame["mail"]["body"] == "ping"
        assert frame["mail"]["headers"] == {
            "X-Trace": "t1",
            "To": "agent@example.org",
            "From": "bot@example.org",
            "Subject": "Status",
            "Message-ID": "<1.mine@mindswarm.ai>",
            "In-Reply-To": "<0.prev@mindswarm.ai>",
        }

    @pytest.mark.asyncio
    async def test_send_timeout(self, transport: ConnectionTransport) -> None:
        """A send that outlasts its deadline fails with a subject-naming timeout."""
        adapter = MailAdapter(transport)
        await transport.connect()

        async def stall(frame: dict) -> None:
            await asyncio.sleep(1.0)

        transport.send_frame = AsyncMock(side_effect=stall)  # type: ignore[method-assign]

        with pytest.raises(TimeoutError, match="Mail timeout: Slow"):
            await adapter.send_mail_to("agent@example.org", "Slow", "body", timeout=0.01)


# =============================================================================
# Inbound Dispatch Tests
# =============================================================================


class TestInbound:
    """Tests for inbound frame classification."""

    @pytest.mark.asyncio
    async def test_mail_envelope_delivered(
        self, transport: ConnectionTransport, factory: MockSocketFactory, wait_until
    ) -> None:
        adapter = MailAdapter(transport)
        received: list[Mail] = []
        adapter.on_mail(received.append)
        await transport.connect()

        factory.current.inject(
            {
                "type": "mail",
                "mail": {
                    "headers": {
                        "From": "agent@example.org",
                        "To": "me@example.org",
                        "Subject": "News",
                        "Message-ID": "<5.abc@mindswarm.ai>",
                    },
                    "body": "hello",
                },
            }
        )
        await wait_until(lambda: len(received) == 1)

        assert received[0].subject == "News"
        assert received[0].from_address == "agent@example.org"
        assert received[0].message_id == "<5.abc@mindswarm.ai>"

    @pytest.mark.asyncio
    async def test_notification_delivered(
        self, transport: ConnectionTransport, factory: MockSocketFactory, wait_until
    ) -> None:
        adapter = MailAdapter(transport)
        received: list[Mail] = []
        adapter.on_mail(received.append)
        await transport.connect()

        factory.current.inject(
            {
                "type": "mail_notification",
                "message_id": "<6.abc@mindswarm.ai>",
                "from": "agent@example.org",
                "to": "me@example.org",
                "subject": "Update",
                "body": "done",
            }
        )
        await wait_until(lambda: len(received) == 1)

        assert received[0].subject == "Update"
        assert received[0].body == "done"

    @pytest.mark.asyncio
    async def test_unknown_and_invalid_frames_dropped(
        self, transport: ConnectionTransport, factory: MockSocketFactory, wait_until
    ) -> None:
        """Unrecognized or broken frames never reach subscribers or break dispatch."""
        adapter = MailAdapter(transport)
        received: list[Mail] = []
        adapter.on_mail(received.append)
        await transport.connect()

        factory.current.inject({"type": "something_else"})
        factory.current.inject({"type": "mail", "mail": "not an object"})
        factory.current.inject({"type": "mail_notification", "from": 42, "to": "x"})
        factory.current.inject({"type": "mail_notification", "from": "a", "to": "b", "subject": "ok"})
        await wait_until(lambda: len(received) == 1)

        assert received[0].subject == "ok"
        assert transport.is_connected

    @pytest.mark.asyncio
    async def test_unsubscribe(
        self, transport: ConnectionTransport, factory: MockSocketFactory, wait_until
    ) -> None:
        adapter = MailAdapter(transport)
        first: list[Mail] = []
        second: list[Mail] = []
        unsubscribe = adapter.on_mail(first.append)
        adapter.on_mail(second.append)
        await transport.connect()

        unsubscribe()
        assert adapter.subscriber_count == 1
        factory.current.inject({"type": "mail_notification", "from": "a", "to": "b"})
        await wait_until(lambda: len(second) == 1)

        assert first == []
