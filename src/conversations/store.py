"""Conversation persistence: per-chat message logs and participant state in SQLite."""

import json
import sqlite3
from collections.abc import Iterable, Iterator
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog

from db import ensure_parent, wal_connect
from shared_types import ChatKind, MessageRole

from .models import PREVIEW_TRUNCATE, Conversation, Message, ParticipantState

logger = structlog.get_logger()


class ConversationStore(Protocol):
    """Repository interface the context engine reads from."""

    def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    def append_message(
        self,
        conversation_id: str,
        message: Message,
        kind: ChatKind | None = None,
        title: str | None = None,
    ) -> bool: ...

    def list_conversations(self) -> Iterable[Conversation]: ...


class SQLiteConversationStore:
    """SQLite-backed ConversationStore.

    ``generation`` increases on every mutation so that derived indexes
    (the alias directory) can cache per store state.
    """

    def __init__(self, db_path: str | Path, max_context_messages: int = 100):
        self.db_path = ensure_parent(db_path)
        self.max_context_messages = max_context_messages
        self.generation = 0
        self._init_db()

    def _init_db(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    last_active_at TIMESTAMP,
                    has_introduced INTEGER NOT NULL DEFAULT 0,
                    last_introduction_at TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS participants (
                    conversation_id TEXT NOT NULL,
                    participant_id TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    message_count INTEGER NOT NULL DEFAULT 0,
                    first_seen_at TIMESTAMP NOT NULL,
                    last_active_at TIMESTAMP NOT NULL,
                    last_message_preview TEXT NOT NULL DEFAULT '',
                    is_agent INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (conversation_id, participant_id),
                    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
                )
            """)
            # databases created before agent participants were flagged
            try:
                conn.execute("ALTER TABLE participants ADD COLUMN is_agent INTEGER NOT NULL DEFAULT 0")
            except sqlite3.OperationalError:
                pass  # column already exists
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    conversation_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    sender_name TEXT NOT NULL,
                    content TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    role TEXT NOT NULL,
                    topics TEXT NOT NULL DEFAULT '[]',
                    is_reply INTEGER NOT NULL DEFAULT 0,
                    replied_to_id TEXT,
                    UNIQUE (conversation_id, id),
                    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, seq)"
            )

    def append_message(
        self,
        conversation_id: str,
        message: Message,
        kind: ChatKind | None = None,
        title: str | None = None,
    ) -> bool:
        """Append a message, creating the conversation on first use.

        Returns False when a message with the same id is already logged.
        """
        if not conversation_id:
            raise ValueError("conversation_id is required")
        kind = kind or ChatKind.from_conversation_id(conversation_id)
        ts = message.timestamp.isoformat()

        with wal_connect(self.db_path) as conn:
            dup = conn.execute(
                "SELECT 1 FROM messages WHERE conversation_id = ? AND id = ?",
                (conversation_id, message.id),
            ).fetchone()
            if dup:
                logger.debug(
                    "message_duplicate_skipped",
                    conversation_id=conversation_id,
                    message_id=message.id,
                )
                return False

            conn.execute(
                """INSERT INTO conversations (id, kind, title, last_active_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET last_active_at=excluded.last_active_at""",
                (conversation_id, kind.value, title or "", ts),
            )
            if title:
                conn.execute(
                    "UPDATE conversations SET title = ? WHERE id = ? AND title = ''",
                    (title, conversation_id),
                )
            conn.execute(
                """INSERT INTO participants
                   (conversation_id, participant_id, display_name, message_count,
                    first_seen_at, last_active_at, last_message_preview, is_agent)
                   VALUES (?, ?, ?, 1, ?, ?, ?, ?)
                   ON CONFLICT(conversation_id, participant_id) DO UPDATE SET
                       display_name=CASE WHEN excluded.display_name != ''
                           THEN excluded.display_name ELSE participants.display_name END,
                       message_count=participants.message_count + 1,
                       last_active_at=excluded.last_active_at,
                       last_message_preview=excluded.last_message_preview,
                       is_agent=MAX(participants.is_agent, excluded.is_agent)""",
                (
                    conversation_id,
                    message.sender_id,
                    message.sender_name,
                    ts,
                    ts,
                    message.content[:PREVIEW_TRUNCATE],
                    int(message.role == MessageRole.AGENT),
                ),
            )
            conn.execute(
                """INSERT INTO messages
                   (id, conversation_id, sender_id, sender_name, content, timestamp,
                    role, topics, is_reply, replied_to_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id,
                    conversation_id,
                    message.sender_id,
                    message.sender_name,
                    message.content,
                    ts,
                    MessageRole(message.role).value,
                    json.dumps(sorted(message.topics)),
                    int(message.is_reply),
                    message.replied_to_id,
                ),
            )
            conn.execute(
                """DELETE FROM messages WHERE conversation_id = ? AND seq NOT IN (
                       SELECT seq FROM messages WHERE conversation_id = ?
                       ORDER BY seq DESC LIMIT ?
                   )""",
                (conversation_id, conversation_id, self.max_context_messages),
            )

        self.generation += 1
        return True

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if not row:
                return None
            participants = conn.execute(
                "SELECT * FROM participants WHERE conversation_id = ? ORDER BY first_seen_at, participant_id",
                (conversation_id,),
            ).fetchall()
            messages = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq",
                (conversation_id,),
            ).fetchall()
        return self._build(row, participants, messages)

    def list_conversations(self) -> Iterator[Conversation]:
        with wal_connect(self.db_path) as conn:
            ids = [r["id"] for r in conn.execute("SELECT id FROM conversations ORDER BY id")]
        for conversation_id in ids:
            conversation = self.get_conversation(conversation_id)
            if conversation:
                yield conversation

    def clear_messages(self, conversation_id: str) -> bool:
        """Drop the message log, keeping participants. False if unknown."""
        with wal_connect(self.db_path) as conn:
            cur = conn.execute("SELECT 1 FROM conversations WHERE id = ?", (conversation_id,))
            if not cur.fetchone():
                return False
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        self.generation += 1
        return True

    def set_introduced(self, conversation_id: str, at: datetime) -> None:
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE conversations SET has_introduced = 1, last_introduction_at = ? WHERE id = ?",
                (at.isoformat(), conversation_id),
            )
            if cur.rowcount == 0:
                raise ValueError(f"Conversation not found: {conversation_id}")
        self.generation += 1

    def set_title(self, conversation_id: str, title: str) -> None:
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE conversations SET title = ? WHERE id = ?",
                (title[:80].strip(), conversation_id),
            )
            if cur.rowcount == 0:
                raise ValueError(f"Conversation not found: {conversation_id}")
        self.generation += 1

    @staticmethod
    def _build(row, participant_rows, message_rows) -> Conversation:
        def _dt(value):
            return datetime.fromisoformat(value) if value else None

        participants = {
            p["participant_id"]: ParticipantState(
                id=p["participant_id"],
                display_name=p["display_name"],
                message_count=p["message_count"],
                first_seen_at=_dt(p["first_seen_at"]),
                last_active_at=_dt(p["last_active_at"]),
                last_message_preview=p["last_message_preview"],
                is_agent=bool(p["is_agent"]),
            )
            for p in participant_rows
        }
        messages = [
            Message(
                id=m["id"],
                conversation_id=m["conversation_id"],
                sender_id=m["sender_id"],
                sender_name=m["sender_name"],
                content=m["content"],
                timestamp=_dt(m["timestamp"]),
                role=MessageRole(m["role"]),
                topics=frozenset(json.loads(m["topics"])),
                is_reply=bool(m["is_reply"]),
                replied_to_id=m["replied_to_id"],
            )
            for m in message_rows
        ]
        return Conversation(
            id=row["id"],
            kind=ChatKind(row["kind"]),
            participants=participants,
            messages=messages,
            last_active_at=_dt(row["last_active_at"]),
            has_introduced=bool(row["has_introduced"]),
            title=row["title"],
            last_introduction_at=_dt(row["last_introduction_at"]),
        )


class InMemoryConversationStore:
    """Dict-backed ConversationStore for embedding and tests."""

    def __init__(self, max_context_messages: int = 100):
        self.max_context_messages = max_context_messages
        self.generation = 0
        self._conversations: dict[str, Conversation] = {}

    def append_message(
        self,
        conversation_id: str,
        message: Message,
        kind: ChatKind | None = None,
        title: str | None = None,
    ) -> bool:
        if not conversation_id:
            raise ValueError("conversation_id is required")
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(
                id=conversation_id,
                kind=kind or ChatKind.from_conversation_id(conversation_id),
                title=title or "",
            )
            self._conversations[conversation_id] = conversation
        elif title and not conversation.title:
            conversation.title = title

        if any(m.id == message.id for m in conversation.messages):
            logger.debug(
                "message_duplicate_skipped",
                conversation_id=conversation_id,
                message_id=message.id,
            )
            return False

        conversation.add_message(message, self.max_context_messages)
        self.generation += 1
        return True

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def list_conversations(self) -> list[Conversation]:
        return [self._conversations[k] for k in sorted(self._conversations)]

    def clear_messages(self, conversation_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return False
        conversation.messages = []
        self.generation += 1
        return True

    def set_introduced(self, conversation_id: str, at: datetime) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ValueError(f"Conversation not found: {conversation_id}")
        conversation.has_introduced = True
        conversation.last_introduction_at = at
        self.generation += 1

    def set_title(self, conversation_id: str, title: str) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ValueError(f"Conversation not found: {conversation_id}")
        conversation.title = title[:80].strip()
        self.generation += 1
