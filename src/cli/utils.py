"""Shared CLI utilities."""

from datetime import datetime

import structlog
from rich.console import Console

console = Console()
logger = structlog.get_logger()


def get_components(config) -> dict:
    """Open the stores and wire the assembler from an EngineConfig."""
    from context import RelevanceAssembler
    from conversations import SQLiteConversationStore
    from memory import FactStore

    conversations = SQLiteConversationStore(
        config.paths.conversations_db,
        max_context_messages=config.context.max_context_messages,
    )
    facts = FactStore(config.paths.facts_db)
    assembler = RelevanceAssembler(
        conversations,
        facts,
        settings=config.context,
        agent_id=config.agent.id,
        agent_name=config.agent.name,
    )
    return {
        "config": config,
        "conversations": conversations,
        "facts": facts,
        "aliases": assembler.aliases,
        "assembler": assembler,
    }


def preview(text: str, limit: int = 80) -> str:
    """Single-line preview for table cells."""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def fmt_time(ts: datetime | None) -> str:
    return ts.strftime("%Y-%m-%d %H:%M") if ts else ""
