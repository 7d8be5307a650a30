"""Ingest command: record one message into a conversation log."""

from dataclasses import replace
from datetime import datetime, timezone
from uuid import uuid4

import click
from pydantic import ValidationError
from rich.console import Console

from cli.logging_config import bind_conversation
from cli.utils import get_components
from conversations import InboundMessage
from conversations.ingest import record_message
from shared_types import ChatKind, MessageRole

console = Console()


@click.command()
@click.argument("conversation_id")
@click.argument("sender_id")
@click.argument("text")
@click.option("--name", help="Sender display name")
@click.option("--title", help="Chat title, kept on first sight")
@click.option("--kind", type=click.Choice([k.value for k in ChatKind]), help="Override chat kind")
@click.option("--id", "message_id", help="Message id (default: random)")
@click.option("--reply-to", help="Id of the quoted message")
@click.option("--agent", is_flag=True, help="Record as the agent's own message")
@click.pass_obj
def ingest(
    obj: dict,
    conversation_id: str,
    sender_id: str,
    text: str,
    name: str | None,
    title: str | None,
    kind: str | None,
    message_id: str | None,
    reply_to: str | None,
    agent: bool,
):
    """Record a message from SENDER_ID in CONVERSATION_ID."""
    bind_conversation(conversation_id)
    c = get_components(obj["config"])
    try:
        inbound = InboundMessage(
            id=message_id or uuid4().hex,
            chat_id=conversation_id,
            sender_id=sender_id,
            push_name=name,
            text=text,
            timestamp=datetime.now(timezone.utc),
            quoted_message_id=reply_to,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e))

    message = inbound.to_message(c["config"].agent.id)
    if agent:
        message = replace(message, role=MessageRole.AGENT)

    added = record_message(
        c["conversations"],
        message,
        kind=ChatKind(kind) if kind else None,
        title=title,
    )
    if not added:
        console.print(f"[yellow]Duplicate message skipped:[/] {message.id}")
        return
    console.print(f"[green]Recorded:[/] {message.id} in {conversation_id}")
