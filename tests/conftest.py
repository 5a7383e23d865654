"""Test configuration and fixtures."""

import sqlite3
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence

import pytest

from memlayer.config.settings import ChatCfg, NodeCfg, OllamaCfg, PromptCfg, RagCfg, Settings, StoreCfg
from memlayer.generation.generator import BaseGenerator, MockGenerator
from memlayer.memory.schemas import Message
from memlayer.memory.service import MemoryService
from memlayer.persist.sqlite_store import MemoryDB


class ScriptedGenerator(BaseGenerator):
    """
    Deterministic backend stub that records every call.

    Summary prompts are answered with a line counting the rendered turns,
    other prompts with queued replies or an echo of the last message.
    """

    def __init__(
        self,
        replies: Optional[List[str]] = None,
        vectors: Optional[Dict[str, List[float]]] = None,
    ):
        self.replies = list(replies or [])
        self.vectors = dict(vectors or {})
        self.calls: List[dict] = []
        self.embed_calls: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.embed_error: Optional[Exception] = None
        self._fallback = MockGenerator(dim=8)

    def generate(self, model: str, messages: Sequence[Message], system: Optional[str] = None) -> str:
        self.calls.append({"model": model, "messages": list(messages), "system": system})
        if self.fail_with is not None:
            raise self.fail_with

        last = messages[-1].content
        turns = sum(1 for line in last.splitlines() if line.startswith("- ["))
        if last.startswith("Summarize the following entire"):
            return f"- global summary of {turns} messages"
        if last.startswith("Summarize the following chat"):
            return f"- summary of {turns} messages"
        if self.replies:
            return self.replies.pop(0)
        return f"echo: {last}"

    def embed(self, model: str, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        if text in self.vectors:
            return self.vectors[text]
        return self._fallback.embed(model, text)

    def is_available(self) -> bool:
        return True

    @property
    def summary_calls(self) -> List[dict]:
        return [c for c in self.calls if c["messages"][-1].content.startswith("Summarize")]


def build_settings(tmp_path: Path, rag: bool = False, **chat) -> Settings:
    return Settings(
        store=StoreCfg(path=str(tmp_path / "memory.db")),
        node=NodeCfg(id="home-node", location="kitchen"),
        ollama=OllamaCfg(retries=3, retry_sleep_ms=0),
        chat=ChatCfg(**chat),
        prompt=PromptCfg(max_tokens=2000),
        rag=RagCfg(enabled=rag, top_k=5, min_score=0.2),
    )


def insert_statement(db: MemoryDB, kind: str, text: str, created_at: str, node: str) -> None:
    """Insert a statement row with explicit timestamp and provenance."""
    db.execute(
        "INSERT INTO statements (kind, text, created_at, source_node) VALUES (?, ?, ?, ?)",
        (kind, text, created_at, node),
    )


def insert_chat(
    db: MemoryDB,
    role: str,
    content: str,
    created_at: str,
    session: str = "default",
    node: str = "home-node",
    model: Optional[str] = "llama3.2",
    responded_at: Optional[str] = None,
) -> int:
    """Insert a chat row with explicit timestamp; returns its id."""
    cursor = db.execute(
        "INSERT INTO chat (role, model, content, session, created_at, responded_at, source_node) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (role, model, content, session, created_at, responded_at, node),
    )
    return cursor.lastrowid


def rows(path: Path, sql: str) -> List[tuple]:
    """Read rows from a closed store with a plain connection."""
    conn = sqlite3.connect(str(path))
    try:
        return [tuple(r) for r in conn.execute(sql).fetchall()]
    finally:
        conn.close()


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a temporary store."""
    return build_settings(tmp_path)


@pytest.fixture
def rag_settings(tmp_path) -> Settings:
    return build_settings(tmp_path, rag=True)


@pytest.fixture
def db(tmp_path):
    """Create a temporary MemoryDB instance."""
    store = MemoryDB(tmp_path / "memory.db", node_id="home-node")
    yield store
    store.close()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def service(settings, generator):
    """MemoryService over a temporary store and the scripted backend."""
    store = MemoryDB(settings.store.resolved_path, node_id=settings.node.id)
    svc = MemoryService(store, generator, settings)
    yield svc
    svc.close()


@pytest.fixture
def rag_service(rag_settings, generator):
    store = MemoryDB(rag_settings.store.resolved_path, node_id=rag_settings.node.id)
    svc = MemoryService(store, generator, rag_settings)
    yield svc
    svc.close()


@pytest.fixture
def make_settings(tmp_path):
    """Factory for settings with custom chat/RAG options."""
    def _make(rag: bool = False, **chat) -> Settings:
        return build_settings(tmp_path, rag=rag, **chat)
    return _make


@pytest.fixture
def make_generator():
    """Factory for independent scripted backends."""
    return ScriptedGenerator


@pytest.fixture
def sql():
    """Raw row helpers for building and inspecting stores."""
    return SimpleNamespace(
        insert_statement=insert_statement,
        insert_chat=insert_chat,
        rows=rows,
    )
