"""Memory CLI commands: set, show, history and delete participant facts."""

from datetime import datetime, timezone

import click
from rich.console import Console
from rich.table import Table

from cli.utils import fmt_time, get_components
from memory.decay import decayed_confidence
from memory.models import Fact, FactCategory

console = Console()


@click.group()
def memory():
    """Participant facts used for context."""
    pass


@memory.command("set")
@click.argument("subject_id")
@click.argument("key")
@click.argument("value")
@click.option("--confidence", "-c", default=0.8, type=float, help="Confidence 0-1")
@click.option(
    "--category",
    default=FactCategory.OTHER.value,
    type=click.Choice([c.value for c in FactCategory]),
    help="Fact category",
)
@click.option("--source", "source_message_id", default=None, help="Message the fact came from")
@click.pass_obj
def memory_set(
    obj: dict,
    subject_id: str,
    key: str,
    value: str,
    confidence: float,
    category: str,
    source_message_id: str | None,
):
    """Store KEY=VALUE for SUBJECT_ID, replacing any previous value."""
    c = get_components(obj["config"])
    fact = Fact(
        subject_id=subject_id,
        key=key,
        value=value,
        confidence=confidence,
        source_message_id=source_message_id,
        category=FactCategory(category),
    )
    try:
        c["facts"].upsert(fact)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--confidence")
    console.print(f"[green]Saved:[/] {subject_id} {key} = {value}")


@memory.command("show")
@click.argument("subject_id")
@click.option("--all", "show_all", is_flag=True, help="Include facts below the confidence threshold")
@click.pass_obj
def memory_show(obj: dict, subject_id: str, show_all: bool):
    """List facts for SUBJECT_ID with their decayed confidence."""
    c = get_components(obj["config"])
    threshold = c["config"].context.fact_confidence_threshold
    now = datetime.now(timezone.utc)

    facts = c["facts"].get_facts(subject_id)
    rows = [(f, decayed_confidence(f, now)) for f in facts.values()]
    if not show_all:
        rows = [(f, conf) for f, conf in rows if conf >= threshold]

    if not rows:
        console.print(f"No facts stored for {subject_id}.")
        return

    table = Table(title=c["aliases"].display_name(subject_id))
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Conf", width=5)
    table.add_column("Category", width=12)
    table.add_column("Updated", style="dim")
    for f, conf in rows:
        table.add_row(f.key, f.value, f"{conf:.2f}", f.category.value, fmt_time(f.updated_at))
    console.print(table)


@memory.command("history")
@click.argument("subject_id")
@click.argument("key")
@click.pass_obj
def memory_history(obj: dict, subject_id: str, key: str):
    """Show superseded values of one fact."""
    c = get_components(obj["config"])
    current = c["facts"].get(subject_id, key)
    history = c["facts"].get_history(subject_id, key)
    if not current and not history:
        raise click.ClickException(f"Fact not found: {subject_id}/{key}")

    if current:
        console.print(f"Current: {current.value} (conf={current.confidence:.2f})")
    for h in history:
        console.print(f"  [dim]{fmt_time(h.superseded_at)}[/] {h.value} (conf={h.confidence:.2f})")


@memory.command("delete")
@click.argument("subject_id")
@click.argument("key")
@click.confirmation_option(prompt="Delete this fact?")
@click.pass_obj
def memory_delete(obj: dict, subject_id: str, key: str):
    """Delete a fact, keeping its value in history."""
    c = get_components(obj["config"])
    try:
        c["facts"].delete(subject_id, key)
    except ValueError as e:
        raise click.ClickException(str(e))
    console.print(f"Deleted {subject_id}/{key}")
