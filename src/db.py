"""Shared SQLite helpers (WAL mode, row_factory, foreign keys)."""

import sqlite3
from pathlib import Path


def wal_connect(db_path: str | Path, row_factory: bool = True) -> sqlite3.Connection:
    """Open SQLite connection with WAL journal mode and foreign keys enforced.

    Args:
        db_path: Path to database file.
        row_factory: If True (default), rows come back as sqlite3.Row.
    """
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


def ensure_parent(db_path: str | Path) -> Path:
    """Expand ~ and create the parent directory of a database file."""
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
