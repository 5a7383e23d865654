"""
SQLite-backed memory store.

Owns every persisted record of the memory layer:
- statements: facts, desires, opinions, backlog items
- chat: one row per user/assistant turn
- chat_summaries: rolling summary per session (replace semantics)
- embeddings: vectors indexing the rows above
- global_summary: singleton produced by store merges

Thread-safe: statements are serialized on one connection with an RLock,
and multi-statement updates run inside IMMEDIATE transactions.
"""

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from memlayer.errors import InvalidRequest, StorageError
from memlayer.persist.records import (
    ChatMessage,
    ChatSummary,
    EmbeddingRecord,
    GlobalSummary,
    StatementRecord,
    utc_now,
)

logger = logging.getLogger(__name__)


SCHEMA = {
    "statements": """
        CREATE TABLE IF NOT EXISTS statements (
            id INTEGER PRIMARY KEY,
            kind TEXT NOT NULL,
            text TEXT NOT NULL,
            created_at TEXT NOT NULL,
            source_node TEXT NOT NULL
        )
    """,
    "chat": """
        CREATE TABLE IF NOT EXISTS chat (
            id INTEGER PRIMARY KEY,
            role TEXT NOT NULL,
            model TEXT,
            content TEXT NOT NULL,
            session TEXT NOT NULL DEFAULT 'default',
            created_at TEXT NOT NULL,
            responded_at TEXT,
            source_node TEXT NOT NULL
        )
    """,
    "chat_summaries": """
        CREATE TABLE IF NOT EXISTS chat_summaries (
            id INTEGER PRIMARY KEY,
            session TEXT NOT NULL,
            start_id INTEGER NOT NULL,
            end_id INTEGER NOT NULL,
            summary TEXT NOT NULL,
            created_at TEXT NOT NULL,
            source_node TEXT NOT NULL
        )
    """,
    "embeddings": """
        CREATE TABLE IF NOT EXISTS embeddings (
            id INTEGER PRIMARY KEY,
            kind TEXT NOT NULL,
            row_id INTEGER,
            session TEXT,
            content TEXT NOT NULL,
            embedding TEXT NOT NULL,
            created_at TEXT NOT NULL,
            source_node TEXT NOT NULL
        )
    """,
    "global_summary": """
        CREATE TABLE IF NOT EXISTS global_summary (
            id INTEGER PRIMARY KEY,
            summary TEXT NOT NULL,
            created_at TEXT NOT NULL,
            source_node TEXT NOT NULL
        )
    """,
}

TABLES = tuple(SCHEMA)

# Additive migrations for stores written by older versions.
MIGRATIONS = [
    ("statements", "source_node", "source_node TEXT NOT NULL DEFAULT 'unknown'"),
    ("chat", "session", "session TEXT NOT NULL DEFAULT 'default'"),
    ("chat", "source_node", "source_node TEXT NOT NULL DEFAULT 'unknown'"),
    ("chat", "responded_at", "responded_at TEXT"),
]


def connect(db_path: Path) -> sqlite3.Connection:
    """
    Open a SQLite connection in autocommit mode with URI filenames enabled.

    URI mode lets read-only sources be attached with ``?mode=ro``.
    """
    db_path = Path(db_path).expanduser().resolve()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        db_path.as_uri(),
        uri=True,
        check_same_thread=False,  # Allow multi-threaded access
        timeout=10.0,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    return conn


class MemoryDB:
    """
    File-backed store for statements, chat, summaries and embeddings.

    Usage:
        >>> db = MemoryDB(Path("data/memory.db"), node_id="home-node")
        >>> db.add_statement("fact", "likes tea")
        >>> db.add_chat("user", "llama3.2", "hello", "default")
    """

    def __init__(self, db_path: Path, node_id: str = "unknown"):
        """
        Open (and create if needed) the store at the given path.

        Args:
            db_path: Path to SQLite database file
            node_id: Provenance tag written into new rows
        """
        self.db_path = Path(db_path).expanduser().resolve()
        self.node_id = node_id
        self._lock = threading.RLock()

        try:
            self._conn = connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open store {self.db_path}: {e}", path=str(self.db_path)) from e

        self.ensure_schema()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def execute(self, sql: str, params: Sequence = ()) -> sqlite3.Cursor:
        """Run one statement, mapping driver failures to StorageError."""
        with self._lock:
            try:
                return self._conn.execute(sql, params)
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}", path=str(self.db_path)) from e

    def query(self, sql: str, params: Sequence = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        IMMEDIATE transaction; nested use joins the outer transaction.

        Yields:
            The underlying connection
        """
        with self._lock:
            if self._conn.in_transaction:
                yield self._conn
                return

            self.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise StorageError(f"SQLite error: {e}", path=str(self.db_path)) from e
                raise
            else:
                self.execute("COMMIT")

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def table_exists(self, table: str, schema: str = "main") -> bool:
        rows = self.query(
            f"SELECT name FROM {schema}.sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        return bool(rows)

    def table_columns(self, table: str, schema: str = "main") -> List[str]:
        """Column names of a table (empty if the table is missing)."""
        rows = self.query(f"PRAGMA {schema}.table_info({table})")
        return [row["name"].lower() for row in rows]

    def _ensure_column(self, table: str, column: str, ddl: str) -> None:
        if self.table_exists(table) and column not in self.table_columns(table):
            logger.info(f"Migrating {self.db_path.name}: adding {table}.{column}")
            self.execute(f"ALTER TABLE {table} ADD COLUMN {ddl}")

    def ensure_schema(self) -> None:
        """Create tables if they don't exist and apply additive migrations."""
        for ddl in SCHEMA.values():
            self.execute(ddl)

        for table, column, ddl in MIGRATIONS:
            self._ensure_column(table, column, ddl)

        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_key
            ON embeddings(kind, row_id, session)
        """)
        self.execute("""
            CREATE INDEX IF NOT EXISTS idx_chat_session
            ON chat(session, created_at)
        """)

    def reset(self) -> Path:
        """
        Delete the database file and recreate an empty schema.

        Returns:
            Path of the recreated store
        """
        with self._lock:
            self._conn.close()
            for suffix in ("", "-wal", "-shm"):
                Path(f"{self.db_path}{suffix}").unlink(missing_ok=True)
            self._conn = connect(self.db_path)
            self.ensure_schema()
        return self.db_path

    def count(self, table: str) -> int:
        """Number of rows in one of the store's tables."""
        if table not in TABLES:
            raise InvalidRequest(f"Unknown table: {table}")
        return self.query(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def add_statement(self, kind: str, text: str) -> StatementRecord:
        """
        Persist one statement.

        Args:
            kind: fact, desire, opinion or backlog
            text: Statement text (trimmed, must be non-blank)

        Returns:
            Stored StatementRecord with its id
        """
        record = StatementRecord(kind=kind, text=text, source_node=self.node_id)
        cursor = self.execute(
            "INSERT INTO statements (kind, text, created_at, source_node) VALUES (?, ?, ?, ?)",
            (record.kind, record.text, record.created_at, record.source_node),
        )
        record.id = cursor.lastrowid
        return record

    def statements(self, kind: Optional[str] = None) -> List[StatementRecord]:
        """Statements oldest to newest, optionally filtered by kind."""
        if kind is None:
            rows = self.query(
                "SELECT id, kind, text, created_at, source_node FROM statements "
                "ORDER BY created_at ASC, id ASC"
            )
        else:
            rows = self.query(
                "SELECT id, kind, text, created_at, source_node FROM statements "
                "WHERE kind = ? ORDER BY created_at ASC, id ASC",
                (kind,),
            )
        return [StatementRecord(**dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def add_chat(self, role: str, model: Optional[str], content: str, session: str) -> ChatMessage:
        """
        Persist a single chat turn.

        Args:
            role: "user" or "assistant"
            model: Model name used for the exchange
            content: Message text
            session: Session name

        Returns:
            Stored ChatMessage with its id
        """
        message = ChatMessage(
            role=role,
            model=model,
            content=content,
            session=session,
            source_node=self.node_id,
        )
        cursor = self.execute(
            "INSERT INTO chat (role, model, content, session, created_at, source_node) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (message.role, message.model, message.content, message.session,
             message.created_at, message.source_node),
        )
        message.id = cursor.lastrowid
        return message

    def mark_responded(self, chat_id: int) -> str:
        """Set responded_at on an assistant row (only once)."""
        ts = utc_now()
        self.execute(
            "UPDATE chat SET responded_at = ? "
            "WHERE id = ? AND role = 'assistant' AND responded_at IS NULL",
            (ts, chat_id),
        )
        return ts

    def _chat_rows(self, where: str = "", params: Sequence = ()) -> List[ChatMessage]:
        rows = self.query(
            "SELECT id, role, model, content, session, created_at, responded_at, source_node "
            f"FROM chat {where} ORDER BY created_at ASC, id ASC",
            params,
        )
        return [ChatMessage(**dict(row)) for row in rows]

    def chat_by_session(self, session: str) -> List[ChatMessage]:
        """All chat turns for a session (oldest to newest)."""
        return self._chat_rows("WHERE session = ?", (session,))

    def recent_chat(self, session: str, limit: int) -> List[ChatMessage]:
        """The newest `limit` turns of a session, oldest first."""
        rows = self.query(
            "SELECT id, role, model, content, session, created_at, responded_at, source_node "
            "FROM chat WHERE session = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (session, limit),
        )
        return [ChatMessage(**dict(row)) for row in reversed(rows)]

    def all_chat(self) -> List[ChatMessage]:
        """Every chat turn across sessions (oldest to newest)."""
        return self._chat_rows()

    def sessions(self) -> List[str]:
        rows = self.query("SELECT DISTINCT session FROM chat ORDER BY session")
        return [row["session"] for row in rows]

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def summaries(self, session: str) -> List[ChatSummary]:
        """Summary rows for a session ordered by range start."""
        rows = self.query(
            "SELECT id, session, start_id, end_id, summary, created_at, source_node "
            "FROM chat_summaries WHERE session = ? ORDER BY start_id ASC, id ASC",
            (session,),
        )
        return [ChatSummary(**dict(row)) for row in rows]

    def replace_summary(self, session: str, start_id: int, end_id: int, summary: str) -> ChatSummary:
        """
        Atomically replace every summary of a session with a single row.

        Args:
            session: Session name
            start_id: First chat id covered (inclusive)
            end_id: Last chat id covered (inclusive)
            summary: Summary text

        Returns:
            The newly stored ChatSummary
        """
        record = ChatSummary(
            session=session,
            start_id=start_id,
            end_id=end_id,
            summary=summary,
            source_node=self.node_id,
        )
        with self.transaction() as conn:
            conn.execute("DELETE FROM chat_summaries WHERE session = ?", (session,))
            cursor = conn.execute(
                "INSERT INTO chat_summaries (session, start_id, end_id, summary, created_at, source_node) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (record.session, record.start_id, record.end_id, record.summary,
                 record.created_at, record.source_node),
            )
            record.id = cursor.lastrowid
        return record

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    _EMBEDDING_KEY = (
        "kind = ? AND COALESCE(row_id, -1) = COALESCE(?, -1) "
        "AND COALESCE(session, '') = COALESCE(?, '')"
    )

    def has_embedding(self, kind: str, row_id: Optional[int], session: Optional[str]) -> bool:
        rows = self.query(
            f"SELECT 1 FROM embeddings WHERE {self._EMBEDDING_KEY} LIMIT 1",
            (kind, row_id, session),
        )
        return bool(rows)

    def add_embedding(
        self,
        kind: str,
        row_id: Optional[int],
        session: Optional[str],
        content: str,
        embedding: List[float],
    ) -> Optional[EmbeddingRecord]:
        """
        Store an embedding unless one already exists for (kind, row_id, session).

        Returns:
            The stored EmbeddingRecord, or None if it already existed
        """
        record = EmbeddingRecord(
            kind=kind,
            row_id=row_id,
            session=session,
            content=content,
            embedding=embedding,
            source_node=self.node_id,
        )
        with self.transaction() as conn:
            exists = conn.execute(
                f"SELECT 1 FROM embeddings WHERE {self._EMBEDDING_KEY} LIMIT 1",
                (kind, row_id, session),
            ).fetchone()
            if exists:
                return None
            cursor = conn.execute(
                "INSERT INTO embeddings (kind, row_id, session, content, embedding, created_at, source_node) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (record.kind, record.row_id, record.session, record.content,
                 json.dumps(record.embedding), record.created_at, record.source_node),
            )
            record.id = cursor.lastrowid
        return record

    def embeddings(self) -> List[EmbeddingRecord]:
        """All stored embeddings (linear scan source for retrieval)."""
        rows = self.query(
            "SELECT id, kind, row_id, session, content, embedding, created_at, source_node "
            "FROM embeddings ORDER BY id ASC"
        )
        records = []
        for row in rows:
            data = dict(row)
            try:
                data["embedding"] = json.loads(data["embedding"])
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Skipping embedding row {data['id']} with unreadable vector")
                continue
            records.append(EmbeddingRecord(**data))
        return records

    # ------------------------------------------------------------------
    # Global summary
    # ------------------------------------------------------------------

    def global_summary(self) -> Optional[GlobalSummary]:
        rows = self.query(
            "SELECT id, summary, created_at, source_node FROM global_summary ORDER BY id DESC LIMIT 1"
        )
        return GlobalSummary(**dict(rows[0])) if rows else None

    def replace_global_summary(self, summary: str) -> GlobalSummary:
        """Delete-then-insert the singleton global summary in one transaction."""
        record = GlobalSummary(summary=summary, source_node=self.node_id)
        with self.transaction() as conn:
            conn.execute("DELETE FROM global_summary")
            cursor = conn.execute(
                "INSERT INTO global_summary (summary, created_at, source_node) VALUES (?, ?, ?)",
                (record.summary, record.created_at, record.source_node),
            )
            record.id = cursor.lastrowid
        return record

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
