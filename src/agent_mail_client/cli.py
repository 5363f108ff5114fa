"""Agent mail CLI.

Usage:
    agent-mail send TO SUBJECT BODY           # Fire-and-forget mail
    agent-mail send TO SUBJECT BODY --wait    # Send and wait for the reply
    agent-mail request SUBJECT BODY           # Ask the UI agent, print the reply
    agent-mail listen                         # Print inbound mail until Ctrl+C
    agent-mail listen --count 5               # Stop after five mails
    agent-mail config                         # Show effective configuration

    agent-mail --url ws://host:8000/ws ...    # Override AGENT_MAIL_WS_URL
    agent-mail --debug ...                    # Log frame traffic
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any

import click

from .client import MailClient, create_client
from .config import ChannelConfig
from .errors import MailChannelError
from .protocol.mail import Mail

# Output format options
FORMAT_TEXT = "text"
FORMAT_JSON = "json"


def format_mail(mail: Mail, output_format: str = FORMAT_TEXT) -> str:
    """Render a mail for the terminal."""
    if output_format == FORMAT_JSON:
        return json.dumps(mail.model_dump(), indent=2, default=str)

    body = mail.body if isinstance(mail.body, str) else json.dumps(mail.body, indent=2)
    lines = [
        f"From:       {mail.from_address}",
        f"To:         {mail.to_address}",
        f"Subject:    {mail.subject}",
        f"Message-ID: {mail.message_id}",
    ]
    if mail.in_reply_to:
        lines.append(f"In-Reply-To: {mail.in_reply_to}")
    lines.extend(["", body])
    return "\n".join(lines)


def _run(ctx: click.Context, operation: Any, prepare: Any = None) -> None:
    """Run ``operation(client)`` on a fresh connected client.

    ``prepare(client)`` runs before connecting, for subscriptions that must
    not miss mail delivered right after the handshake.
    """

    async def execute() -> None:
        client = create_client(ctx.obj["config"])
        if prepare is not None:
            prepare(client)
        try:
            await client.connect()
            await operation(client)
        finally:
            await client.disconnect()

    try:
        asyncio.run(execute())
    except MailChannelError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--url", help="WebSocket URL of the mail backend")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, url: str | None, debug: bool) -> None:
    """Agent mail - talk to agents over a persistent mail channel."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, Any] = {}
    if url:
        overrides["url"] = url
    if debug:
        overrides["debug"] = True

    ctx.ensure_object(dict)
    ctx.obj["config"] = ChannelConfig.from_env(**overrides)


@main.command()
@click.argument("to")
@click.argument("subject")
@click.argument("body")
@click.option("--wait", is_flag=True, help="Wait for the reply and print it")
@click.option("--timeout", type=float, default=None, help="Reply timeout in seconds")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Reply output format",
)
@click.pass_context
def send(
    ctx: click.Context,
    to: str,
    subject: str,
    body: str,
    wait: bool,
    timeout: float | None,
    output_format: str,
) -> None:
    """Send a mail to TO.

    Examples:

        agent-mail send agent@example.org "Status" "How are you?"

        agent-mail send agent@example.org "Status" "How are you?" --wait
    """

    async def operation(client: MailClient) -> None:
        if wait:
            reply = await client.send_and_wait(to, subject, body, timeout=timeout)
            click.echo(format_mail(reply, output_format))
            return

        await client.send(to, subject, body, strict=True)
        if not client.queue.is_empty():
            raise click.ClickException("Mail could not be sent")
        click.echo(f"Sent: {subject} -> {to}", err=True)

    _run(ctx, operation)


@main.command()
@click.argument("subject")
@click.argument("body")
@click.option("--timeout", type=float, default=None, help="Reply timeout in seconds")
@click.option("--decode", "decode_body", is_flag=True, help="Print only the decoded reply body")
@click.pass_context
def request(
    ctx: click.Context,
    subject: str,
    body: str,
    timeout: float | None,
    decode_body: bool,
) -> None:
    """Send SUBJECT/BODY to the UI agent and print its reply."""

    async def operation(client: MailClient) -> None:
        reply = await client.request(subject, body, timeout=timeout)
        if decode_body:
            click.echo(json.dumps(client.decode(reply), indent=2, default=str))
        else:
            click.echo(format_mail(reply))

        if not client.is_success_response(reply):
            error = client.extract_error(reply)
            if error:
                click.echo(f"Agent reported an error: {error}", err=True)

    _run(ctx, operation)


@main.command()
@click.option("--count", "-n", type=int, default=None, help="Exit after this many mails")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format",
)
@click.pass_context
def listen(ctx: click.Context, count: int | None, output_format: str) -> None:
    """Print inbound mail as it arrives."""

    inbox: asyncio.Queue[Mail] = asyncio.Queue()

    def subscribe(client: MailClient) -> None:
        client.adapter.on_mail(inbox.put_nowait)

    async def operation(client: MailClient) -> None:
        user = await client.ensure_authenticated()
        click.echo(f"Listening as {user or 'anonymous'}...", err=True)

        received = 0
        while count is None or received < count:
            mail = await inbox.get()
            click.echo(format_mail(mail, output_format))
            click.echo("")
            received += 1

    try:
        _run(ctx, operation, prepare=subscribe)
    except KeyboardInterrupt:
        click.echo("Stopped.", err=True)


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def config_cmd(ctx: click.Context, output_json: bool) -> None:
    """Show the effective configuration."""
    config: ChannelConfig = ctx.obj["config"]
    values = dataclasses.asdict(config)

    if output_json:
        click.echo(json.dumps(values, indent=2))
    else:
        for key, value in values.items():
            click.echo(f"{key:<24} {value}")

    problems = config.validate()
    for problem in problems:
        click.echo(f"Warning: {problem}", err=True)
    if problems:
        sys.exit(1)


if __name__ == "__main__":
    main()
