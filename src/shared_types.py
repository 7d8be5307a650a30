"""Shared enums and types for the context engine."""

from enum import IntEnum, StrEnum


class ChatKind(StrEnum):
    PRIVATE = "private"
    GROUP = "group"

    @classmethod
    def from_conversation_id(cls, conversation_id: str) -> "ChatKind":
        """Group chat ids carry the ``@g.us`` suffix; everything else is private."""
        return cls.GROUP if conversation_id.endswith("@g.us") else cls.PRIVATE


class MessageRole(StrEnum):
    USER = "user"
    AGENT = "agent"


class EntryRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TopicTag(StrEnum):
    IDENTITY = "identity"
    AGE = "age"
    LOCATION = "location"
    WORK = "work"
    INTERESTS = "interests"
    FOOD = "food"
    MUSIC = "music"
    ENTERTAINMENT = "entertainment"
    SPORTS = "sports"
    EDUCATION = "education"
    IMAGE = "image"
    QUESTION = "question"
    GREETING = "greeting"
    REQUEST = "request"


class CrossChatType(StrEnum):
    MOOD = "mood"
    CONVERSATION = "conversation"
    GROUP_ACTIVITY = "group_activity"
    NONE = "none"


class EntryPriority(IntEnum):
    """Final sort key for context entries; lower sorts first."""

    CONVERSATION = 0
    CROSS_CHAT = 1
    FACTS = 2
