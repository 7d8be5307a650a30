"""Data models for participant facts."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FactCategory(str, Enum):
    PERSONAL = "personal"
    PREFERENCE = "preference"
    RELATIONSHIP = "relationship"
    TEMPORAL = "temporal"
    OTHER = "other"


@dataclass
class Fact:
    subject_id: str
    key: str
    value: str
    confidence: float = 0.8
    source_message_id: str | None = None
    updated_at: datetime = field(default_factory=utcnow)
    category: FactCategory = FactCategory.OTHER


@dataclass
class FactHistoryEntry:
    """A superseded fact value, kept when a newer value replaces it."""

    subject_id: str
    key: str
    value: str
    confidence: float
    source_message_id: str | None
    updated_at: datetime
    superseded_at: datetime
