"""Shared test fixtures for the context engine."""

import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def memory_store():
    from conversations.store import InMemoryConversationStore

    return InMemoryConversationStore()


@pytest.fixture
def sqlite_store(tmp_path):
    from conversations.store import SQLiteConversationStore

    return SQLiteConversationStore(tmp_path / "conversations.db")


@pytest.fixture
def fact_store(tmp_path):
    from memory.store import FactStore

    return FactStore(tmp_path / "facts.db")


@pytest.fixture(autouse=True)
def _reset_metrics():
    from observability import metrics

    metrics.reset()
    yield
    metrics.reset()
