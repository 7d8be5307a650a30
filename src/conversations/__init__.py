"""Conversations: canonical messages, participant state and the conversation store."""

from .canonical import InboundMessage, canonicalize, extract_phone_number
from .models import Conversation, Message, ParticipantState
from .store import ConversationStore, InMemoryConversationStore, SQLiteConversationStore

__all__ = [
    "Conversation",
    "ConversationStore",
    "InMemoryConversationStore",
    "InboundMessage",
    "Message",
    "ParticipantState",
    "SQLiteConversationStore",
    "canonicalize",
    "extract_phone_number",
]
