"""
Embedding-based recall.

Indexes statements, chat turns and summaries as embeddings, and retrieves
the most similar entries for a query with a linear cosine scan.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from memlayer.errors import MemoryLayerError
from memlayer.generation.generator import BaseGenerator
from memlayer.persist.sqlite_store import MemoryDB

from .schemas import RetrievedEntry

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector is empty or zero, or the lengths differ.
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


class EmbeddingIndexer:
    """
    Best-effort writer of embeddings.

    Each (kind, row_id, session) is embedded at most once. Failures are
    logged and never reach the caller.
    """

    def __init__(
        self,
        db: MemoryDB,
        generator: BaseGenerator,
        embedding_model: Optional[str],
        enabled: bool = False,
    ):
        self.db = db
        self.generator = generator
        self.embedding_model = embedding_model
        self.enabled = enabled and bool(embedding_model)

    def index(self, kind: str, row_id: Optional[int], session: Optional[str], content: str) -> bool:
        """
        Embed and store one entry if it is not indexed yet.

        Returns:
            True if a new embedding row was written
        """
        if not self.enabled or not content or not content.strip():
            return False

        try:
            if self.db.has_embedding(kind, row_id, session):
                return False
            vector = self.generator.embed(self.embedding_model, content)
            return self.db.add_embedding(kind, row_id, session, content, vector) is not None
        except MemoryLayerError as e:
            logger.warning(f"Embedding failed for {kind}/{row_id}: {e}")
            return False

    def backfill(self) -> int:
        """
        Index every statement, chat turn and summary lacking an embedding.

        Returns:
            Number of embeddings written
        """
        if not self.enabled:
            return 0

        written = 0
        for statement in self.db.statements():
            written += self.index("statement", statement.id, None, statement.text)

        for turn in self.db.all_chat():
            written += self.index(f"chat_{turn.role}", turn.id, turn.session, turn.content)

        for session in self.db.sessions():
            for summary in self.db.summaries(session):
                written += self.index("chat_summary", summary.id, session, summary.summary)

        logger.info(f"Backfilled {written} embeddings into {self.db.db_path.name}")
        return written


class Retriever:
    """
    Top-k similarity search over the store's embeddings.

    Retrieval is advisory: any failure yields an empty result.
    """

    def __init__(
        self,
        db: MemoryDB,
        generator: BaseGenerator,
        embedding_model: Optional[str],
        enabled: bool = False,
        top_k: int = 5,
        min_score: float = 0.2,
    ):
        """
        Initialize retriever.

        Args:
            db: Memory store holding the embeddings
            generator: Backend used to embed queries
            embedding_model: Embedding model name
            enabled: Whether retrieval is active
            top_k: Maximum results
            min_score: Minimum cosine score kept
        """
        self.db = db
        self.generator = generator
        self.embedding_model = embedding_model
        self.enabled = enabled
        self.top_k = top_k
        self.min_score = min_score

    def retrieve(self, query: str) -> List[RetrievedEntry]:
        """
        Retrieve the most similar stored entries for a query.

        Args:
            query: Query text

        Returns:
            Entries with score >= min_score, best first, at most top_k
        """
        if not self.enabled or not self.embedding_model or not query or not query.strip():
            return []

        try:
            query_vec = self.generator.embed(self.embedding_model, query)
            rows = self.db.embeddings()
        except MemoryLayerError as e:
            logger.warning(f"Retrieval failed, continuing without context: {e}")
            return []

        scored = []
        for row in rows:
            score = cosine_similarity(query_vec, row.embedding)
            if score >= self.min_score:
                scored.append(RetrievedEntry(
                    kind=row.kind,
                    row_id=row.row_id,
                    session=row.session,
                    content=row.content,
                    score=score,
                ))

        scored.sort(key=lambda e: e.score, reverse=True)
        return scored[: self.top_k]

    @staticmethod
    def format_context(entries: List[RetrievedEntry]) -> str:
        """Render entries as a ``RAG CONTEXT:`` block (empty string if none)."""
        if not entries:
            return ""
        return "RAG CONTEXT:\n" + "\n".join(e.format_line() for e in entries)
