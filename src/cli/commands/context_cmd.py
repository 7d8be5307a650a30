"""Context commands: build windows, classify text, resolve names, inspect threads."""

import json
from datetime import datetime, timezone
from uuid import uuid4

import click
from rich.console import Console
from rich.table import Table

from cli.logging_config import bind_conversation
from cli.utils import fmt_time, get_components, preview
from context.classifier import classify_cross_chat_intent, classify_topics, references_prior_image
from context.threads import ThreadRanker, most_active_senders
from conversations.ingest import clear_context, mark_introduced, should_introduce
from conversations.models import Message

console = Console()


@click.group()
def context():
    """Assemble and inspect conversation context."""
    pass


@context.command("build")
@click.argument("conversation_id")
@click.argument("query")
@click.option("--sender", default="cli", help="Sender id for the query message")
@click.option("--reply-to", help="Treat the query as a reply to this message id")
@click.option("--json", "as_json", is_flag=True, help="Print role/content messages as JSON")
@click.pass_obj
def context_build(obj: dict, conversation_id: str, query: str, sender: str, reply_to: str | None, as_json: bool):
    """Build the context window QUERY would get in CONVERSATION_ID."""
    bind_conversation(conversation_id)
    c = get_components(obj["config"])
    message = Message(
        id=f"query-{uuid4().hex[:8]}",
        conversation_id=conversation_id,
        sender_id=sender,
        sender_name=sender,
        content=query,
        timestamp=datetime.now(timezone.utc),
        is_reply=reply_to is not None,
        replied_to_id=reply_to,
    )
    window = c["assembler"].build_context(message, conversation_id)

    if as_json:
        click.echo(json.dumps(window.to_messages(), ensure_ascii=False, indent=2))
        return

    if not window.entries:
        console.print(f"[yellow]No context for {conversation_id}.[/]")
        return

    table = Table(title=f"Context for {conversation_id}")
    table.add_column("Pri", width=3)
    table.add_column("Role", width=9)
    table.add_column("Source", style="cyan")
    table.add_column("Content")
    for e in window.entries:
        source = e.name if e.message_id else e.source_label
        table.add_row(str(int(e.priority)), str(e.role), source or "", preview(e.content))
    console.print(table)

    for d in window.degraded:
        console.print(f"[yellow]Skipped {d.step}:[/] {d.error}")


@context.command("classify")
@click.argument("text")
@click.pass_obj
def context_classify(obj: dict, text: str):
    """Show topic tags, cross-chat intent and image reference for TEXT."""
    agent_name = obj["config"].agent.name
    topics = sorted(classify_topics(text))
    intent = classify_cross_chat_intent(text, agent_name)

    console.print(f"Topics: {', '.join(topics) if topics else '-'}")
    if intent.is_cross_chat_question:
        console.print(f"Cross-chat: [cyan]{intent.type}[/]")
        if intent.target_name:
            console.print(f"  target name: {intent.target_name}")
        if intent.target_chat:
            console.print(f"  target chat: {intent.target_chat}")
    else:
        console.print("Cross-chat: -")
    console.print(f"Image reference: {'yes' if references_prior_image(text) else 'no'}")


@context.command("resolve")
@click.argument("name")
@click.option("--chats", is_flag=True, help="Resolve against group titles instead")
@click.pass_obj
def context_resolve(obj: dict, name: str, chats: bool):
    """List participants (or groups) matching NAME."""
    c = get_components(obj["config"])
    aliases = c["aliases"]

    if chats:
        matches = aliases.resolve_chat_candidates(name)
        if not matches:
            console.print(f"[yellow]No chat matches {name!r}.[/]")
            return
        table = Table()
        table.add_column("Conversation", style="cyan")
        table.add_column("Title")
        table.add_column("Score", justify="right")
        for m in matches:
            table.add_row(m.conversation_id, m.title, str(m.score))
        console.print(table)
        return

    candidates = aliases.resolve_candidates(name)
    if not candidates:
        console.print(f"[yellow]No participant matches {name!r}.[/]")
        return
    table = Table()
    table.add_column("Participant", style="cyan")
    table.add_column("Name")
    table.add_column("Score", justify="right")
    for m in candidates:
        table.add_row(m.participant_id, aliases.display_name(m.participant_id), str(m.score))
    console.print(table)


@context.command("threads")
@click.argument("conversation_id")
@click.option("-k", "--top-k", "top_k", type=click.IntRange(min=1), help="Threads to show (default: thread_top_k)")
@click.pass_obj
def context_threads(obj: dict, conversation_id: str, top_k: int | None):
    """Show the top-ranked threads of a conversation."""
    c = get_components(obj["config"])
    conversation = c["conversations"].get_conversation(conversation_id)
    if conversation is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")

    ranker = c["assembler"].ranker
    if top_k is not None:
        ranker = ThreadRanker(
            agent_id=ranker.agent_id,
            config={"max_messages": c["config"].context.thread_max_messages, "top_k": top_k},
        )
    threads = ranker.top_threads(conversation.messages)
    if not threads:
        console.print("[yellow]No messages.[/]")
        return

    active = most_active_senders(conversation.messages, exclude=ranker.agent_id)
    console.print(f"Most active: {', '.join(sorted(active)) or '-'}")
    for t in threads:
        console.print(f"\n[cyan]Thread {t.index}[/] score={t.score}")
        for m in t.messages:
            console.print(f"  [dim]{fmt_time(m.timestamp)}[/] {m.sender_name}: {preview(m.content)}")


@context.command("clear")
@click.argument("conversation_id")
@click.confirmation_option(prompt="Clear this conversation's messages?")
@click.pass_obj
def context_clear(obj: dict, conversation_id: str):
    """Drop a conversation's message log, keeping its participants."""
    c = get_components(obj["config"])
    if not clear_context(c["conversations"], conversation_id):
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    console.print(f"[green]Cleared:[/] {conversation_id}")


@context.command("intro")
@click.argument("conversation_id")
@click.option("--mark", is_flag=True, help="Record that the agent just introduced itself")
@click.pass_obj
def context_intro(obj: dict, conversation_id: str, mark: bool):
    """Whether the agent should introduce itself in CONVERSATION_ID."""
    c = get_components(obj["config"])
    now = datetime.now(timezone.utc)
    if mark:
        try:
            mark_introduced(c["conversations"], conversation_id, now)
        except ValueError as e:
            raise click.ClickException(str(e))
        console.print(f"[green]Marked introduced:[/] {conversation_id}")
        return

    conversation = c["conversations"].get_conversation(conversation_id)
    answer = should_introduce(conversation, c["config"].agent.id, now)
    console.print("yes" if answer else "no")
