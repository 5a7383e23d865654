"""
Persistence layer.

Provides:
- Typed records for statements, chat, summaries, embeddings, global summary
- SQLite-backed MemoryDB with schema creation and additive migrations
"""

from .records import (
    STATEMENT_KINDS,
    ChatMessage,
    ChatSummary,
    EmbeddingRecord,
    GlobalSummary,
    StatementRecord,
    utc_now,
)
from .sqlite_store import TABLES, MemoryDB

__all__ = [
    "STATEMENT_KINDS",
    "ChatMessage",
    "ChatSummary",
    "EmbeddingRecord",
    "GlobalSummary",
    "StatementRecord",
    "utc_now",
    "TABLES",
    "MemoryDB",
]
