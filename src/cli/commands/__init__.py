"""CLI command modules."""

from .context_cmd import context
from .ingest import ingest
from .memory import memory

__all__ = [
    "context",
    "ingest",
    "memory",
]
