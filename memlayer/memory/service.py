"""
Caller-facing memory service.

Ties the store, summarizer, retriever and context assembler to a
generation backend:
- statement capture (facts, desires, opinions, backlog)
- the ask flow (persist, summarize, assemble, generate, persist)
- read access to history and summaries
"""

import logging
import threading
from typing import Dict, List, Optional

from memlayer.config.settings import Settings
from memlayer.errors import AskFailed, InvalidRequest, MemoryLayerError
from memlayer.generation.generator import BaseGenerator
from memlayer.generation.ollama_client import OllamaClient
from memlayer.persist.records import STATEMENT_KINDS, ChatMessage, ChatSummary, StatementRecord
from memlayer.persist.sqlite_store import MemoryDB

from .context import ContextAssembler
from .recall import EmbeddingIndexer, Retriever
from .summarizer import RollingSummarizer

logger = logging.getLogger(__name__)


class MemoryService:
    """
    Memory layer facade used by the API and CLI.

    Asks on the same session are serialized; different sessions run
    concurrently.
    """

    def __init__(self, db: MemoryDB, generator: BaseGenerator, settings: Settings):
        """
        Initialize service.

        Args:
            db: Memory store
            generator: Generation/embedding backend
            settings: Application settings
        """
        self.db = db
        self.generator = generator
        self.settings = settings

        rag = settings.rag
        embedding_model = settings.ollama.embedding_model
        self.indexer = EmbeddingIndexer(db, generator, embedding_model, enabled=rag.enabled)
        self.retriever = Retriever(
            db,
            generator,
            embedding_model,
            enabled=rag.enabled,
            top_k=rag.top_k,
            min_score=rag.min_score,
        )
        self.summarizer = RollingSummarizer(
            db, generator, recent_window=settings.chat.recent_window, indexer=self.indexer
        )
        self.assembler = ContextAssembler(db, settings, retriever=self.retriever)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _session_lock(self, session: str) -> threading.Lock:
        with self._locks_guard:
            if session not in self._locks:
                self._locks[session] = threading.Lock()
            return self._locks[session]

    def resolve_session(self, session: Optional[str]) -> str:
        if session is None or not session.strip():
            return self.settings.chat.default_session
        return session.strip()

    # Statements

    def remember(self, kind: str, *texts: str) -> List[StatementRecord]:
        """
        Persist statements of one kind, skipping blank texts.

        Args:
            kind: fact, desire, opinion or backlog
            *texts: Statement texts

        Returns:
            Stored records in input order
        """
        if kind not in STATEMENT_KINDS:
            raise InvalidRequest(f"Unknown statement kind: {kind}", kind_value=kind)

        records = []
        for text in texts:
            if text is None or not text.strip():
                continue
            record = self.db.add_statement(kind, text)
            self.indexer.index("statement", record.id, None, record.text)
            records.append(record)
        return records

    def fact(self, *texts: str) -> List[StatementRecord]:
        return self.remember("fact", *texts)

    def desire(self, *texts: str) -> List[StatementRecord]:
        return self.remember("desire", *texts)

    def opinion(self, *texts: str) -> List[StatementRecord]:
        return self.remember("opinion", *texts)

    def backlog(self, *texts: str) -> List[StatementRecord]:
        return self.remember("backlog", *texts)

    def statements(self, kind: Optional[str] = None) -> List[StatementRecord]:
        if kind is not None and kind not in STATEMENT_KINDS:
            raise InvalidRequest(f"Unknown statement kind: {kind}", kind_value=kind)
        return self.db.statements(kind)

    # Ask flow

    def ask(
        self,
        prompt: str,
        model: Optional[str] = None,
        session: Optional[str] = None,
        system: Optional[str] = None,
    ) -> str:
        """
        Answer a prompt with memory-aware context.

        Args:
            prompt: User prompt (non-blank)
            model: Model name (default: configured model)
            session: Session name (default: configured session)
            system: System prompt override (default: built from memory)

        Returns:
            Answer text

        Raises:
            InvalidRequest: Blank prompt
            AskFailed: Backend or storage failure after the prompt was accepted
        """
        if prompt is None or not prompt.strip():
            raise InvalidRequest("ask requires a non-blank prompt")

        session = self.resolve_session(session)
        model = model or self.settings.ollama.default_model

        with self._session_lock(session):
            try:
                user_turn = self.db.add_chat("user", model, prompt, session)
                self.indexer.index("chat_user", user_turn.id, session, prompt)

                self.summarizer.ensure_summary(session, model)

                system_prompt = system or self.assembler.build_system_prompt(session)
                messages = self.assembler.build_messages(session, prompt, exclude_id=user_turn.id)
                answer = self.generator.generate(model, messages, system=system_prompt)

                reply = self.db.add_chat("assistant", model, answer, session)
                self.db.mark_responded(reply.id)
                self.indexer.index("chat_assistant", reply.id, session, answer)
            except MemoryLayerError as e:
                logger.error(f"Ask failed for session '{session}': {e}")
                raise AskFailed(session, e) from e

        return answer

    # Reads

    def chat_history(self, session: Optional[str] = None) -> List[ChatMessage]:
        return self.db.chat_by_session(self.resolve_session(session))

    def current_summary(self, session: Optional[str] = None) -> Optional[ChatSummary]:
        """The session's rolling summary, if one has been written."""
        summaries = self.db.summaries(self.resolve_session(session))
        return summaries[-1] if summaries else None

    def global_summary(self) -> Optional[str]:
        record = self.db.global_summary()
        return record.summary if record else None

    def close(self) -> None:
        self.db.close()


def create_memory_service(
    settings: Optional[Settings] = None,
    generator: Optional[BaseGenerator] = None,
) -> MemoryService:
    """
    Factory function to create a memory service.

    Args:
        settings: Settings (default: defaults plus environment overrides)
        generator: Backend (default: OllamaClient built from settings)

    Returns:
        MemoryService over the configured store
    """
    if settings is None:
        settings = Settings()

    if generator is None:
        generator = OllamaClient.from_settings(settings)

    db = MemoryDB(settings.store.resolved_path, node_id=settings.node.id)
    logger.info(f"Memory store ready at {db.db_path} (node {settings.node.id})")
    return MemoryService(db, generator, settings)
