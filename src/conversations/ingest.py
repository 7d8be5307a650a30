"""Ingestion helpers: recording messages, clearing logs and introduction bookkeeping."""

from dataclasses import replace
from datetime import datetime, timedelta

import structlog

from context.classifier import classify_topics
from shared_types import ChatKind

from .models import Conversation, Message
from .store import ConversationStore

logger = structlog.get_logger()

INTRODUCTION_COOLDOWN = timedelta(hours=24)
NEW_CONVERSATION_MESSAGES = 3


def record_message(
    store: ConversationStore,
    message: Message,
    kind: ChatKind | None = None,
    title: str | None = None,
) -> bool:
    """Append a canonical message, tagging topics first when it carries none."""
    if not message.topics and message.content:
        message = replace(message, topics=frozenset(classify_topics(message.content)))
    added = store.append_message(message.conversation_id, message, kind=kind, title=title)
    if added:
        logger.debug(
            "message_recorded",
            conversation_id=message.conversation_id,
            message_id=message.id,
            topics=sorted(message.topics),
        )
    return added


def clear_context(store, conversation_id: str) -> bool:
    """Clear a conversation's messages but keep its participants."""
    cleared = store.clear_messages(conversation_id)
    logger.info("context_cleared", conversation_id=conversation_id, cleared=cleared)
    return cleared


def should_introduce(conversation: Conversation | None, agent_id: str | None, now: datetime) -> bool:
    """Whether the agent should introduce itself in a group.

    True for unknown or very new conversations and when the agent has been
    silent for more than a day; a recent introduction suppresses it.
    """
    if conversation is None:
        return True

    if conversation.has_introduced and conversation.last_introduction_at:
        if now - conversation.last_introduction_at < INTRODUCTION_COOLDOWN:
            return False

    if len(conversation.messages) < NEW_CONVERSATION_MESSAGES:
        return True

    agent_messages = [m for m in conversation.messages if m.sender_id == agent_id]
    if not agent_messages:
        return True
    return now - agent_messages[-1].timestamp > INTRODUCTION_COOLDOWN


def mark_introduced(store, conversation_id: str, now: datetime) -> None:
    store.set_introduced(conversation_id, now)
