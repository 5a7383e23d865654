"""
Unit tests for token heuristics and context assembly.
"""

import pytest

from memlayer.memory.context import (
    ContextAssembler,
    estimate_message_tokens,
    estimate_tokens,
    fit_messages,
)
from memlayer.memory.recall import Retriever
from memlayer.memory.schemas import Message


def msg(content, role="user"):
    return Message(role=role, content=content)


# ============================================================================
# Token heuristics
# ============================================================================

@pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
def test_estimate_tokens(text, tokens):
    assert estimate_tokens(text) == tokens


def test_fit_messages_drops_oldest():
    messages = [msg("a" * 40), msg("b" * 40), msg("c" * 40)]
    fitted = fit_messages(messages, max_tokens=20)
    assert [m.content[0] for m in fitted] == ["b", "c"]


def test_fit_messages_keeps_newest_even_if_oversized():
    messages = [msg("a" * 8), msg("z" * 400)]
    fitted = fit_messages(messages, max_tokens=10)
    assert fitted == [messages[-1]]


@pytest.mark.parametrize("budget", [1, 5, 13, 50, 200])
@pytest.mark.parametrize("sizes", [[3], [10, 20, 30], [100, 1, 1, 1], [7] * 12])
def test_token_budget_law(sizes, budget):
    messages = [msg("x" * (4 * n)) for n in sizes]
    fitted = fit_messages(messages, budget)

    assert fitted[-1] is messages[-1]
    assert estimate_message_tokens(fitted) <= budget or len(fitted) == 1


# ============================================================================
# ContextAssembler
# ============================================================================

@pytest.fixture
def assembler(db, settings):
    return ContextAssembler(db, settings)


def test_system_prompt_empty_store(assembler):
    prompt = assembler.build_system_prompt("s")

    assert "NODE:\n- home-node @ kitchen (home-node)" in prompt
    for title in ("FACTS", "DESIRES", "OPINIONS", "BACKLOG (context only)"):
        assert f"{title}:\n- None recorded." in prompt
    assert "CONVERSATION SUMMARY" not in prompt
    assert "CONVERSATION HISTORY: (none yet)" in prompt


def test_system_prompt_blocks(assembler, db):
    db.add_statement("fact", "likes tea")
    db.add_statement("backlog", "fix the bike")
    db.replace_summary("s", 1, 1, "- talked about tea")
    turn = db.add_chat("user", "m", "hello", "s")

    prompt = assembler.build_system_prompt("s")

    assert "FACTS:\n- likes tea (home-node)" in prompt
    assert "BACKLOG (context only):\n- fix the bike (home-node)" in prompt
    assert "DESIRES:\n- None recorded." in prompt
    assert "CONVERSATION SUMMARY:\n- talked about tea" in prompt
    assert f"CONVERSATION HISTORY (newest last):\n- [{turn.created_at}] user: hello" in prompt
    assert prompt.index("NODE:") < prompt.index("FACTS:") < prompt.index("CONVERSATION SUMMARY")


def test_history_limited_to_recent_window(assembler, db):
    for i in range(8):
        db.add_chat("user", "m", f"turn {i}", "s")

    prompt = assembler.build_system_prompt("s")

    assert "turn 2" not in prompt
    assert all(f"turn {i}" in prompt for i in range(3, 8))


def test_build_messages_recent_window_then_new_turn(assembler, db):
    for i in range(7):
        db.add_chat("user" if i % 2 == 0 else "assistant", "m", f"turn {i}", "s")
    pending = db.add_chat("user", "m", "new question", "s")

    messages = assembler.build_messages("s", "new question", exclude_id=pending.id)

    assert [m.content for m in messages] == [
        "turn 2", "turn 3", "turn 4", "turn 5", "turn 6", "new question",
    ]
    assert messages[1].role == "assistant"


def test_build_messages_with_rag_context(db, settings, generator):
    db.add_embedding("statement", 1, None, "likes tea", [1.0, 0.0])
    generator.vectors["what drink?"] = [1.0, 0.0]
    retriever = Retriever(db, generator, "nomic-embed-text", enabled=True)
    assembler = ContextAssembler(db, settings, retriever=retriever)

    messages = assembler.build_messages("s", "what drink?")

    assert messages[-1] == Message(role="user", content="what drink?")
    assert messages[-2].role == "system"
    assert messages[-2].content.startswith("RAG CONTEXT:\n- [statement/1 global")


def test_build_messages_respects_budget(db, make_settings):
    settings = make_settings()
    settings.prompt.max_tokens = 10
    for i in range(5):
        db.add_chat("user", "m", "x" * 40, "s")
    assembler = ContextAssembler(db, settings)

    messages = assembler.build_messages("s", "short")

    assert estimate_message_tokens(messages) <= 10
    assert messages[-1].content == "short"


def test_build_messages_is_read_only(assembler, db):
    db.add_chat("user", "m", "hello", "s")
    assembler.build_system_prompt("s")
    assembler.build_messages("s", "next")
    assert db.count("chat") == 1
    assert db.count("chat_summaries") == 0
