"""Data models produced by the context engine."""

from dataclasses import dataclass, field
from datetime import datetime

from shared_types import CrossChatType, EntryPriority, EntryRole

from .errors import DegradedLookup

# chat header, cross-chat, private digest, image, facts
MAX_INJECTED_ENTRIES = 5


@dataclass(frozen=True)
class ContextEntry:
    role: EntryRole
    content: str
    source_label: str
    priority: int = EntryPriority.CONVERSATION
    timestamp: datetime | None = None
    message_id: str | None = None
    name: str | None = None


@dataclass
class ContextWindow:
    """Ordered context entries for one query, plus any skipped steps."""

    conversation_id: str
    entries: list[ContextEntry] = field(default_factory=list)
    degraded: list[DegradedLookup] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    @property
    def message_entries(self) -> list[ContextEntry]:
        return [e for e in self.entries if e.message_id is not None]

    @property
    def injected_entries(self) -> list[ContextEntry]:
        return [e for e in self.entries if e.message_id is None]

    def message_ids(self) -> list[str]:
        return [e.message_id for e in self.message_entries]

    def by_label(self, prefix: str) -> list[ContextEntry]:
        return [e for e in self.entries if e.source_label.startswith(prefix)]

    def to_messages(self) -> list[dict]:
        """Render as role/content dicts for a chat completion call."""
        out = []
        for e in self.entries:
            msg = {"role": str(e.role), "content": e.content}
            if e.name:
                msg["name"] = e.name
            out.append(msg)
        return out


@dataclass(frozen=True)
class AliasMatch:
    participant_id: str
    score: int


@dataclass(frozen=True)
class ChatMatch:
    conversation_id: str
    score: int
    title: str = ""


@dataclass(frozen=True)
class CrossChatIntent:
    is_cross_chat_question: bool
    type: CrossChatType = CrossChatType.NONE
    target_name: str | None = None
    target_chat: str | None = None


NO_INTENT = CrossChatIntent(is_cross_chat_question=False)
