"""
Multi-replica store merge.

Unions statements, chat and summaries of independently grown stores into
one store, deduplicating rows by content (ids are not stable across
replicas), then re-derives per-session and global summaries.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from memlayer.config.settings import Settings
from memlayer.errors import InvalidMergePath, InvalidRequest, StorageError
from memlayer.generation.generator import BaseGenerator
from memlayer.memory.recall import EmbeddingIndexer
from memlayer.memory.schemas import Message
from memlayer.memory.summarizer import RollingSummarizer
from memlayer.persist.records import GlobalSummary
from memlayer.persist.sqlite_store import MemoryDB

logger = logging.getLogger(__name__)


GLOBAL_SUMMARY_INSTRUCTIONS = (
    "Summarize the following entire conversation history into concise bullet points. "
    "Capture key events, dates/times, tasks, and decisions. Avoid fluff."
)

# Columns copied per table, in insert order.
MERGE_COLUMNS: Dict[str, List[str]] = {
    "statements": ["kind", "text", "created_at", "source_node"],
    "chat": ["role", "model", "content", "session", "created_at", "responded_at", "source_node"],
    "chat_summaries": ["session", "start_id", "end_id", "summary", "created_at", "source_node"],
}

# Content identity of a row; nullable columns compare with NULL as ''.
DEDUP_KEYS: Dict[str, List[str]] = {
    "statements": ["kind", "text", "created_at", "source_node"],
    "chat": ["role", "model", "content", "session", "created_at", "responded_at", "source_node"],
    "chat_summaries": ["session", "start_id", "end_id", "summary", "source_node"],
}

NULLABLE = {("chat", "model"), ("chat", "responded_at")}

# Values for columns that older stores may lack.
SOURCE_DEFAULTS: Dict[Tuple[str, str], str] = {
    ("statements", "source_node"): "'unknown'",
    ("chat", "session"): "'default'",
    ("chat", "source_node"): "'unknown'",
    ("chat", "responded_at"): "NULL",
    ("chat", "model"): "NULL",
}


def discard_store(path: Path) -> None:
    """Delete a store file together with its WAL side files."""
    path = Path(path).expanduser().resolve()
    for suffix in ("", "-wal", "-shm"):
        Path(f"{path}{suffix}").unlink(missing_ok=True)


@contextmanager
def attached(db: MemoryDB, sources: Sequence[Path], prefix: str = "src") -> Iterator[List[str]]:
    """
    Attach source stores read-only for the duration of the block.

    SQLite allows 10 attached databases per connection by default.

    Yields:
        The schema aliases to query the sources through, in source order
    """
    aliases: List[str] = []
    try:
        for i, source in enumerate(sources):
            alias = f"{prefix}{i}"
            uri = Path(source).expanduser().resolve().as_uri() + "?mode=ro"
            db.execute(f"ATTACH DATABASE ? AS {alias}", (uri,))
            aliases.append(alias)
        yield aliases
    finally:
        for alias in aliases:
            db.execute(f"DETACH DATABASE {alias}")


def _source_expr(table: str, column: str, present: Sequence[str]) -> str:
    if column in present:
        return f"s.{column} AS {column}"
    default = SOURCE_DEFAULTS.get((table, column))
    if default is None:
        raise StorageError(f"Source table {table} lacks required column {column}")
    return f"{default} AS {column}"


def _key_match(table: str, column: str) -> str:
    if (table, column) in NULLABLE:
        return f"COALESCE(t.{column}, '') = COALESCE(n.{column}, '')"
    return f"t.{column} = n.{column}"


def fold_sources(db: MemoryDB, table: str, aliases: Sequence[str]) -> int:
    """
    Insert the sources' rows of one table that have no content match yet.

    A single set-based INSERT ... SELECT over a UNION ALL of the attached
    sources. Rows identical across sources are inserted once, and all rows
    are appended in global creation order, so destination ids follow
    ``created_at`` whichever source a row came from.

    Args:
        db: Destination store (sources attached as ``aliases``)
        table: statements, chat or chat_summaries
        aliases: Schema aliases of the attached sources

    Returns:
        Number of rows inserted
    """
    columns = MERGE_COLUMNS[table]
    selects = []
    for rank, alias in enumerate(aliases):
        if not db.table_exists(table, schema=alias):
            logger.info(f"Source {alias} has no {table} table; skipping")
            continue
        present = db.table_columns(table, schema=alias)
        exprs = ", ".join(_source_expr(table, c, present) for c in columns)
        selects.append(f"SELECT {exprs}, {rank} AS src_rank, s.rowid AS src_id FROM {alias}.{table} s")
    if not selects:
        return 0

    keys = DEDUP_KEYS[table]
    match = " AND ".join(_key_match(table, c) for c in keys)
    col_list = ", ".join(columns)
    picked = ", ".join(c if c in keys else f"MIN(n.{c})" for c in columns)
    group_by = ", ".join(keys)
    union = "\n            UNION ALL\n            ".join(selects)

    sql = f"""
        INSERT INTO main.{table} ({col_list})
        SELECT {picked} FROM (
            {union}
        ) n
        WHERE NOT EXISTS (
            SELECT 1 FROM main.{table} t WHERE {match}
        )
        GROUP BY {group_by}
        ORDER BY MIN(n.created_at) ASC, n.source_node ASC, MIN(n.src_rank) ASC, MIN(n.src_id) ASC
    """
    return db.execute(sql).rowcount


def _check_paths(dest: Path, sources: Sequence[Path]) -> Tuple[Path, List[Path]]:
    dest = Path(dest).expanduser().resolve()
    resolved = [Path(s).expanduser().resolve() for s in sources]

    for source in resolved:
        if source == dest:
            raise InvalidMergePath(
                "Destination store must differ from every source",
                dest=str(dest),
                source=str(source),
            )
    for source in resolved:
        if not source.is_file():
            raise InvalidRequest(f"Source store not found: {source}", path=str(source))
    return dest, resolved


def build_global_summary(
    db: MemoryDB,
    generator: BaseGenerator,
    model: str,
) -> Optional[GlobalSummary]:
    """
    Compress the whole chat history of a store into its global summary.

    Returns:
        The stored GlobalSummary, or None when the store has no chat
    """
    turns = db.all_chat()
    if not turns:
        return None

    lines = "\n".join(
        f"- [{t.created_at}] ({t.session}) {t.role}: {t.content}" for t in turns
    )
    prompt = f"{GLOBAL_SUMMARY_INSTRUCTIONS}\n\n{lines}"
    summary = generator.generate(model, [Message(role="user", content=prompt)])
    record = db.replace_global_summary(summary)
    logger.info(f"Global summary written ({len(turns)} messages, {len(summary)} chars)")
    return record


def merge_all(
    dest: Path,
    sources: Sequence[Path],
    generator: BaseGenerator,
    settings: Settings,
    model: Optional[str] = None,
) -> Path:
    """
    Merge two or more stores into a fresh destination store.

    Args:
        dest: Destination path (deleted first if it exists)
        sources: Source store paths, folded in order
        generator: Backend for re-summarization and the global summary
        settings: Node identity, recent window and RAG settings
        model: Model for summaries (default: configured model)

    Returns:
        Resolved destination path

    Raises:
        InvalidMergePath: Destination equals a source
        InvalidRequest: Fewer than two sources, or a source is missing
        StorageError, BackendError: Merge aborted; destination is invalid
    """
    if len(sources) < 2:
        raise InvalidRequest("merge requires at least two source stores")

    dest, sources = _check_paths(dest, sources)
    model = model or settings.ollama.default_model

    discard_store(dest)
    db = MemoryDB(dest, node_id=settings.node.id)
    try:
        with attached(db, sources) as aliases:
            for table in MERGE_COLUMNS:
                inserted = fold_sources(db, table, aliases)
                logger.info(f"Merged {inserted} {table} rows from {len(sources)} stores")

        indexer = EmbeddingIndexer(
            db, generator, settings.ollama.embedding_model, enabled=settings.rag.enabled
        )
        summarizer = RollingSummarizer(
            db, generator, recent_window=settings.chat.recent_window, indexer=indexer
        )
        for session in db.sessions():
            summarizer.ensure_summary(session, model)

        build_global_summary(db, generator, model)
        indexer.backfill()
    except BaseException:
        db.close()
        discard_store(dest)
        logger.error(f"Merge into {dest} aborted; destination removed")
        raise
    db.close()

    logger.info(f"Merged {len(sources)} stores into {dest}")
    return dest


def merge_stores(
    dest: Path,
    a: Path,
    b: Path,
    generator: BaseGenerator,
    settings: Settings,
    model: Optional[str] = None,
) -> Path:
    """Merge store ``a`` then store ``b`` into a fresh ``dest``."""
    return merge_all(dest, [a, b], generator, settings, model=model)


def sync_merge(local: Path, remote: Path, node_id: str = "unknown") -> bool:
    """
    Fold a remote store into the local one in a single transaction.

    No re-summarization and no global summary. The local store is created
    if missing.

    Args:
        local: Local store path
        remote: Remote store path (must exist)
        node_id: Provenance tag if the local store is created

    Returns:
        True on success
    """
    local = Path(local).expanduser().resolve()
    remote = Path(remote).expanduser().resolve()
    if not remote.is_file():
        raise InvalidRequest(f"Remote store not found: {remote}", path=str(remote))

    with MemoryDB(local, node_id=node_id) as db:
        with attached(db, [remote]) as aliases:
            with db.transaction():
                counts = {table: fold_sources(db, table, aliases) for table in MERGE_COLUMNS}

    logger.info(f"Synced {remote.name} into {local.name}: {counts}")
    return True
