"""Participant facts: confidence-scored key/value beliefs with a history log."""

from .decay import decayed_confidence
from .models import Fact, FactCategory, FactHistoryEntry
from .store import FactReader, FactStore

__all__ = [
    "Fact",
    "FactCategory",
    "FactHistoryEntry",
    "FactReader",
    "FactStore",
    "decayed_confidence",
]
