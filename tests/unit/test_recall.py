"""
Unit tests for cosine similarity, embedding indexing and retrieval.
"""

import pytest

from memlayer.errors import BackendUnreachable, StorageError
from memlayer.memory.recall import EmbeddingIndexer, Retriever, cosine_similarity
from memlayer.memory.schemas import RetrievedEntry


# ============================================================================
# cosine_similarity
# ============================================================================

def test_cosine_identical_and_orthogonal():
    assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_degenerate_inputs():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([], []) == 0.0


# ============================================================================
# Retriever
# ============================================================================

@pytest.fixture
def scored_db(db):
    """Embeddings at known angles from the query vector [1, 0]."""
    db.add_embedding("statement", 1, None, "exact", [1.0, 0.0])
    db.add_embedding("statement", 2, None, "close", [0.9, 0.3])
    db.add_embedding("chat_user", 3, "s", "far", [0.1, 1.0])
    db.add_embedding("chat_assistant", 4, "s", "opposite", [-1.0, 0.0])
    db.add_embedding("chat_summary", 5, "s", "middle", [0.6, 0.6])
    return db


def make_retriever(db, generator, **kwargs):
    generator.vectors["query"] = [1.0, 0.0]
    options = dict(enabled=True, top_k=5, min_score=0.2)
    options.update(kwargs)
    return Retriever(db, generator, "nomic-embed-text", **options)


def test_results_ordered_and_thresholded(scored_db, generator):
    results = make_retriever(scored_db, generator).retrieve("query")

    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert all(s >= 0.2 for s in scores)
    assert [r.content for r in results] == ["exact", "close", "middle"]


def test_top_k_truncates(scored_db, generator):
    results = make_retriever(scored_db, generator, top_k=2).retrieve("query")
    assert [r.content for r in results] == ["exact", "close"]


def test_disabled_or_blank_query(scored_db, generator):
    assert make_retriever(scored_db, generator, enabled=False).retrieve("query") == []
    assert make_retriever(scored_db, generator).retrieve("   ") == []
    assert Retriever(scored_db, generator, None, enabled=True).retrieve("query") == []
    assert generator.embed_calls == []


def test_backend_failure_yields_empty(scored_db, generator):
    generator.embed_error = BackendUnreachable("down")
    assert make_retriever(scored_db, generator).retrieve("query") == []


def test_storage_failure_yields_empty(scored_db, generator, monkeypatch):
    def broken():
        raise StorageError("disk gone")

    monkeypatch.setattr(scored_db, "embeddings", broken)
    assert make_retriever(scored_db, generator).retrieve("query") == []


def test_format_context():
    entries = [
        RetrievedEntry(kind="statement", row_id=1, session=None, content="likes tea", score=0.9),
        RetrievedEntry(kind="chat_user", row_id=2, session="s", content="hello", score=0.25),
    ]
    assert Retriever.format_context(entries) == (
        "RAG CONTEXT:\n"
        "- [statement/1 global score=0.900] likes tea\n"
        "- [chat_user/2 s score=0.250] hello"
    )
    assert Retriever.format_context([]) == ""


# ============================================================================
# EmbeddingIndexer
# ============================================================================

def test_index_once_per_key(db, generator):
    indexer = EmbeddingIndexer(db, generator, "nomic-embed-text", enabled=True)

    assert indexer.index("statement", 1, None, "likes tea") is True
    assert indexer.index("statement", 1, None, "likes tea") is False
    assert db.count("embeddings") == 1
    assert generator.embed_calls == ["likes tea"]


def test_disabled_indexer_is_noop(db, generator):
    indexer = EmbeddingIndexer(db, generator, "nomic-embed-text", enabled=False)
    assert indexer.index("statement", 1, None, "likes tea") is False
    assert indexer.backfill() == 0
    assert db.count("embeddings") == 0


def test_index_failure_swallowed(db, generator, caplog):
    generator.embed_error = BackendUnreachable("down")
    indexer = EmbeddingIndexer(db, generator, "nomic-embed-text", enabled=True)

    with caplog.at_level("WARNING"):
        assert indexer.index("chat_user", 1, "s", "hello") is False

    assert db.count("embeddings") == 0
    assert any("Embedding failed" in r.message for r in caplog.records)


def test_backfill_covers_all_rows(db, generator):
    db.add_statement("fact", "likes tea")
    db.add_chat("user", "m", "hello", "s")
    db.add_chat("assistant", "m", "hi there", "s")
    db.replace_summary("s", 1, 1, "- greeted")
    indexer = EmbeddingIndexer(db, generator, "nomic-embed-text", enabled=True)

    assert indexer.backfill() == 4
    kinds = sorted(e.kind for e in db.embeddings())
    assert kinds == ["chat_assistant", "chat_summary", "chat_user", "statement"]
    assert indexer.backfill() == 0
