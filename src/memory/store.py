"""Persistent storage for participant facts, current values plus a history log."""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog

from db import ensure_parent, wal_connect

from .models import Fact, FactCategory, FactHistoryEntry, utcnow

logger = structlog.get_logger()


class FactReader(Protocol):
    """Read-only view the context engine needs."""

    def get_facts(self, subject_id: str) -> dict[str, Fact]: ...


class FactStore:
    """SQLite persistence for facts keyed by (subject_id, key)."""

    def __init__(self, db_path: str | Path):
        self.db_path = ensure_parent(db_path)
        self.generation = 0
        self._init_db()

    def _init_db(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS facts (
                    subject_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    confidence REAL NOT NULL DEFAULT 0.8,
                    source_message_id TEXT,
                    category TEXT NOT NULL DEFAULT 'other',
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (subject_id, key)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS fact_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subject_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    source_message_id TEXT,
                    updated_at TIMESTAMP NOT NULL,
                    superseded_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_fact_history_subject
                ON fact_history(subject_id, key)
            """)

    def upsert(self, fact: Fact) -> Fact:
        """Insert or replace a fact. A changed value moves the old one to history."""
        if not 0.0 <= fact.confidence <= 1.0:
            raise ValueError(f"confidence must be 0-1, got {fact.confidence}")

        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM facts WHERE subject_id = ? AND key = ?",
                (fact.subject_id, fact.key),
            ).fetchone()
            if row and row["value"] != fact.value:
                conn.execute(
                    """INSERT INTO fact_history
                       (subject_id, key, value, confidence, source_message_id, updated_at, superseded_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        row["subject_id"],
                        row["key"],
                        row["value"],
                        row["confidence"],
                        row["source_message_id"],
                        row["updated_at"],
                        utcnow().isoformat(),
                    ),
                )
            conn.execute(
                """INSERT INTO facts
                   (subject_id, key, value, confidence, source_message_id, category, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(subject_id, key) DO UPDATE SET
                       value=excluded.value,
                       confidence=excluded.confidence,
                       source_message_id=excluded.source_message_id,
                       category=excluded.category,
                       updated_at=excluded.updated_at""",
                (
                    fact.subject_id,
                    fact.key,
                    fact.value,
                    fact.confidence,
                    fact.source_message_id,
                    FactCategory(fact.category).value,
                    fact.updated_at.isoformat(),
                ),
            )

        self.generation += 1
        logger.debug("fact_upserted", subject_id=fact.subject_id, key=fact.key)
        return fact

    def get_facts(self, subject_id: str) -> dict[str, Fact]:
        """All current facts for a subject, keyed by fact key."""
        with wal_connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM facts WHERE subject_id = ? ORDER BY key",
                (subject_id,),
            ).fetchall()
        return {r["key"]: self._row_to_fact(r) for r in rows}

    def get(self, subject_id: str, key: str) -> Fact | None:
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM facts WHERE subject_id = ? AND key = ?",
                (subject_id, key),
            ).fetchone()
        return self._row_to_fact(row) if row else None

    def get_history(self, subject_id: str, key: str) -> list[FactHistoryEntry]:
        """Superseded values for one fact, oldest first."""
        with wal_connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM fact_history WHERE subject_id = ? AND key = ? ORDER BY id",
                (subject_id, key),
            ).fetchall()
        return [
            FactHistoryEntry(
                subject_id=r["subject_id"],
                key=r["key"],
                value=r["value"],
                confidence=r["confidence"],
                source_message_id=r["source_message_id"],
                updated_at=datetime.fromisoformat(r["updated_at"]),
                superseded_at=datetime.fromisoformat(r["superseded_at"]),
            )
            for r in rows
        ]

    def delete(self, subject_id: str, key: str) -> None:
        """Remove a fact, keeping its last value in history."""
        fact = self.get(subject_id, key)
        if not fact:
            raise ValueError(f"Fact not found: {subject_id}/{key}")
        with wal_connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO fact_history
                   (subject_id, key, value, confidence, source_message_id, updated_at, superseded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    fact.subject_id,
                    fact.key,
                    fact.value,
                    fact.confidence,
                    fact.source_message_id,
                    fact.updated_at.isoformat(),
                    utcnow().isoformat(),
                ),
            )
            conn.execute(
                "DELETE FROM facts WHERE subject_id = ? AND key = ?",
                (subject_id, key),
            )
        self.generation += 1

    def list_subjects(self) -> list[str]:
        with wal_connect(self.db_path) as conn:
            rows = conn.execute("SELECT DISTINCT subject_id FROM facts ORDER BY subject_id").fetchall()
        return [r[0] for r in rows]

    @staticmethod
    def _row_to_fact(row: sqlite3.Row) -> Fact:
        return Fact(
            subject_id=row["subject_id"],
            key=row["key"],
            value=row["value"],
            confidence=row["confidence"],
            source_message_id=row["source_message_id"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            category=FactCategory(row["category"]),
        )
