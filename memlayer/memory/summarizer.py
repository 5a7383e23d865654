"""
Rolling chat summarization.

Compresses everything older than the recent window of a session into a
single replace-semantics summary row.
"""

import logging
from typing import List, Optional

from memlayer.generation.generator import BaseGenerator
from memlayer.persist.records import ChatMessage, ChatSummary
from memlayer.persist.sqlite_store import MemoryDB

from .schemas import Message

logger = logging.getLogger(__name__)


SUMMARY_INSTRUCTIONS = (
    "Summarize the following chat messages in concise bullet points. "
    "Capture key events, dates/times, tasks, and decisions. Avoid fluff."
)


def format_turn(turn: ChatMessage) -> str:
    """Render a chat turn as ``- [timestamp] role: content``."""
    return f"- [{turn.created_at}] {turn.role}: {turn.content}"


def build_summary_prompt(turns: List[ChatMessage]) -> str:
    lines = "\n".join(format_turn(t) for t in turns)
    return f"{SUMMARY_INSTRUCTIONS}\n\n{lines}"


class RollingSummarizer:
    """
    Keeps one authoritative summary per session.

    Every turn except the newest ``recent_window`` is the summary target.
    The whole target is re-summarized in one shot whenever its range moves.
    """

    def __init__(
        self,
        db: MemoryDB,
        generator: BaseGenerator,
        recent_window: int = 5,
        indexer=None,
    ):
        """
        Initialize summarizer.

        Args:
            db: Memory store
            generator: Backend used to produce summaries
            recent_window: Number of newest turns kept verbatim
            indexer: Optional EmbeddingIndexer for new summaries
        """
        self.db = db
        self.generator = generator
        self.recent_window = recent_window
        self.indexer = indexer

    def target(self, session: str) -> List[ChatMessage]:
        """Turns older than the recent window (empty if none)."""
        turns = self.db.chat_by_session(session)
        if len(turns) <= self.recent_window:
            return []
        return turns[: len(turns) - self.recent_window]

    def _covers(self, summary: ChatSummary, start_id: int, end_id: int) -> bool:
        # Ids only mean something in the store that wrote the summary.
        return (
            summary.source_node == self.db.node_id
            and summary.start_id == start_id
            and summary.end_id == end_id
        )

    def ensure_summary(self, session: str, model: str) -> Optional[ChatSummary]:
        """
        Make sure the session's summary covers exactly the non-recent turns.

        Args:
            session: Session name
            model: Model used for summarization

        Returns:
            The newly written summary, or None when nothing had to change

        Raises:
            BackendError: Generation failed (nothing is persisted)
        """
        older = self.target(session)
        if not older:
            return None

        start_id = min(t.id for t in older)
        end_id = max(t.id for t in older)

        existing = self.db.summaries(session)
        if len(existing) == 1 and self._covers(existing[0], start_id, end_id):
            return None

        prompt = build_summary_prompt(older)
        summary_text = self.generator.generate(model, [Message(role="user", content=prompt)])

        record = self.db.replace_summary(session, start_id, end_id, summary_text)
        logger.info(
            f"Summarized session '{session}' turns {start_id}-{end_id} "
            f"({len(older)} messages, {len(summary_text)} chars)"
        )

        if self.indexer is not None:
            self.indexer.index("chat_summary", record.id, session, record.summary)

        return record
