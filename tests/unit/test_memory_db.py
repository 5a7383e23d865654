"""
Unit tests for MemoryDB (schema, migrations, record CRUD).

Tests:
- ensure_schema(): tables, indexes and additive migrations
- statements / chat / summaries / embeddings / global summary
- transaction(): rollback on error
- StorageError mapping
"""

import sqlite3

import pytest

from memlayer.errors import InvalidRequest, StorageError
from memlayer.persist.sqlite_store import TABLES, MemoryDB


# ============================================================================
# Schema
# ============================================================================

def test_schema_created(db):
    for table in TABLES:
        assert db.table_exists(table)
        assert db.count(table) == 0


def test_migrations_add_missing_columns(tmp_path):
    path = tmp_path / "old.db"
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE statements (id INTEGER PRIMARY KEY, kind TEXT, text TEXT, created_at TEXT)")
    conn.execute(
        "CREATE TABLE chat (id INTEGER PRIMARY KEY, role TEXT, model TEXT, content TEXT, created_at TEXT)"
    )
    conn.execute("INSERT INTO statements (kind, text, created_at) VALUES ('fact', 'old', '2024')")
    conn.execute("INSERT INTO chat (role, model, content, created_at) VALUES ('user', 'm', 'hi', '2024')")
    conn.commit()
    conn.close()

    with MemoryDB(path) as db:
        assert "source_node" in db.table_columns("statements")
        assert {"session", "source_node", "responded_at"} <= set(db.table_columns("chat"))

        [statement] = db.statements()
        assert statement.source_node == "unknown"

        [turn] = db.all_chat()
        assert turn.session == "default"
        assert turn.source_node == "unknown"
        assert turn.responded_at is None


def test_ensure_schema_is_repeatable(db):
    db.add_statement("fact", "likes tea")
    db.ensure_schema()
    assert db.count("statements") == 1


def test_reset_recreates_empty_store(db):
    db.add_statement("fact", "likes tea")
    db.reset()
    assert db.count("statements") == 0
    assert db.table_exists("global_summary")


def test_count_unknown_table(db):
    with pytest.raises(InvalidRequest):
        db.count("sqlite_master")


def test_sqlite_errors_become_storage_errors(db):
    with pytest.raises(StorageError):
        db.execute("SELECT * FROM no_such_table")


# ============================================================================
# Statements and chat
# ============================================================================

def test_add_statement(db):
    record = db.add_statement("desire", "  learn Rust  ")
    assert record.id is not None
    assert record.text == "learn Rust"
    assert record.source_node == "home-node"

    db.add_statement("fact", "likes tea")
    assert [s.text for s in db.statements()] == ["learn Rust", "likes tea"]
    assert [s.text for s in db.statements("fact")] == ["likes tea"]


def test_chat_by_session_ordering(db):
    first = db.add_chat("user", "m", "one", "a")
    db.add_chat("user", "m", "other", "b")
    second = db.add_chat("assistant", "m", "two", "a")

    turns = db.chat_by_session("a")
    assert [t.id for t in turns] == [first.id, second.id]
    assert db.sessions() == ["a", "b"]
    assert len(db.all_chat()) == 3


def test_recent_chat_newest_oldest_first(db):
    for i in range(6):
        db.add_chat("user", "m", f"turn {i}", "s")
    db.add_chat("user", "m", "elsewhere", "t")

    assert [t.content for t in db.recent_chat("s", 3)] == ["turn 3", "turn 4", "turn 5"]


def test_mark_responded_sets_once(db):
    reply = db.add_chat("assistant", "m", "hello", "s")
    ts = db.mark_responded(reply.id)
    db.mark_responded(reply.id)

    [turn] = db.chat_by_session("s")
    assert turn.responded_at == ts


def test_mark_responded_ignores_user_turns(db):
    turn = db.add_chat("user", "m", "hello", "s")
    db.mark_responded(turn.id)
    assert db.chat_by_session("s")[0].responded_at is None


# ============================================================================
# Summaries
# ============================================================================

def test_replace_summary_keeps_single_row(db):
    db.replace_summary("s", 1, 3, "first")
    db.replace_summary("s", 1, 6, "second")
    db.replace_summary("other", 1, 2, "unrelated")

    [summary] = db.summaries("s")
    assert (summary.start_id, summary.end_id, summary.summary) == (1, 6, "second")
    assert len(db.summaries("other")) == 1


def test_transaction_rolls_back(db):
    db.replace_summary("s", 1, 3, "kept")
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute("DELETE FROM chat_summaries")
            raise RuntimeError("abort")

    assert [s.summary for s in db.summaries("s")] == ["kept"]


# ============================================================================
# Embeddings and global summary
# ============================================================================

def test_add_embedding_once_per_key(db):
    first = db.add_embedding("statement", 1, None, "likes tea", [0.1, 0.2])
    again = db.add_embedding("statement", 1, None, "likes tea", [0.3, 0.4])
    other = db.add_embedding("chat_user", 1, "s", "hello", [1.0, 0.0])

    assert first is not None
    assert again is None
    assert other is not None
    assert db.has_embedding("statement", 1, None)
    assert not db.has_embedding("statement", 2, None)

    vectors = {(e.kind, e.row_id): e.embedding for e in db.embeddings()}
    assert vectors[("statement", 1)] == [0.1, 0.2]
    assert db.count("embeddings") == 2


def test_unreadable_vectors_skipped(db):
    db.execute(
        "INSERT INTO embeddings (kind, row_id, session, content, embedding, created_at, source_node) "
        "VALUES ('statement', 9, NULL, 'x', 'not json', '2024', 'n')"
    )
    assert db.embeddings() == []


def test_global_summary_singleton(db):
    assert db.global_summary() is None
    db.replace_global_summary("one")
    db.replace_global_summary("two")

    assert db.count("global_summary") == 1
    assert db.global_summary().summary == "two"
