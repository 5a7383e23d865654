"""
Context assembly for the generation backend.

Builds the system prompt from persisted statements, the rolling summary
and recent turns, and the token-budgeted message list for one ask.
"""

import math
from typing import List, Optional, Sequence

from memlayer.config.settings import Settings
from memlayer.persist.records import ChatMessage
from memlayer.persist.sqlite_store import MemoryDB

from .recall import Retriever
from .schemas import Message
from .summarizer import format_turn


PREAMBLE = (
    "You are the user's local assistant running on the user's own hardware.\n"
    "Use the conversation history to stay consistent.\n"
    "Do not claim you forgot something if it clearly appears in the history."
)

STATEMENT_BLOCKS = [
    ("FACTS", "fact"),
    ("DESIRES", "desire"),
    ("OPINIONS", "opinion"),
    ("BACKLOG (context only)", "backlog"),
]


def estimate_tokens(text: str) -> int:
    """Crude heuristic: 4 chars ~ 1 token."""
    return math.ceil(len(text or "") / 4)


def estimate_message_tokens(messages: Sequence[Message]) -> int:
    return sum(estimate_tokens(m.content) for m in messages)


def fit_messages(messages: Sequence[Message], max_tokens: int) -> List[Message]:
    """
    Drop the oldest messages until the list fits the token budget.

    The newest message is always kept, even if it alone exceeds the budget.
    """
    msgs = list(messages)
    while len(msgs) > 1 and estimate_message_tokens(msgs) > max_tokens:
        msgs.pop(0)
    return msgs


def format_block(title: str, entries: Sequence[tuple]) -> str:
    """Render ``TITLE:`` followed by ``- text (source_node)`` lines."""
    if not entries:
        return f"{title}:\n- None recorded."
    lines = "\n".join(f"- {text} ({source})" for text, source in entries)
    return f"{title}:\n{lines}"


class ContextAssembler:
    """
    Read-only composer of prompts and message lists.

    Args:
        db: Memory store
        settings: Node identity, recent window and token budget
        retriever: Optional retriever for a RAG context message
    """

    def __init__(self, db: MemoryDB, settings: Settings, retriever: Optional[Retriever] = None):
        self.db = db
        self.settings = settings
        self.retriever = retriever

    @property
    def recent_window(self) -> int:
        return self.settings.chat.recent_window

    def recent_turns(self, session: str, exclude_id: Optional[int] = None) -> List[ChatMessage]:
        limit = self.settings.chat.history_limit
        turns = [t for t in self.db.recent_chat(session, limit) if t.id != exclude_id]
        return turns[-self.recent_window:]

    def format_history(self, session: str) -> str:
        turns = self.recent_turns(session)
        if not turns:
            return "CONVERSATION HISTORY: (none yet)"
        lines = "\n".join(format_turn(t) for t in turns)
        return f"CONVERSATION HISTORY (newest last):\n{lines}"

    def build_system_prompt(self, session: str) -> str:
        """
        Compose the system prompt for a session.

        Args:
            session: Session name

        Returns:
            Preamble followed by node, statement, summary and history blocks
        """
        node = self.settings.node
        sections = [format_block("NODE", [(f"{node.id} @ {node.location}", node.id)])]

        for title, kind in STATEMENT_BLOCKS:
            entries = [(s.text, s.source_node) for s in self.db.statements(kind)]
            sections.append(format_block(title, entries))

        summaries = self.db.summaries(session)
        if summaries:
            sections.append("CONVERSATION SUMMARY:\n" + "\n".join(s.summary for s in summaries))

        sections.append(self.format_history(session))

        return PREAMBLE + "\n\n" + "\n\n".join(sections) + "\n"

    def build_messages(
        self,
        session: str,
        new_user_text: str,
        exclude_id: Optional[int] = None,
    ) -> List[Message]:
        """
        Assemble the message list sent with one ask.

        Args:
            session: Session name
            new_user_text: The user's new prompt (always last)
            exclude_id: Chat id of the already persisted copy of the new turn

        Returns:
            Recent turns, optional RAG context, and the new user turn,
            trimmed to the prompt token budget
        """
        messages = [
            Message(role=t.role, content=t.content)
            for t in self.recent_turns(session, exclude_id)
        ]

        if self.retriever is not None:
            context = self.retriever.format_context(self.retriever.retrieve(new_user_text))
            if context:
                messages.append(Message(role="system", content=context))

        messages.append(Message(role="user", content=new_user_text))
        return fit_messages(messages, self.settings.prompt.max_tokens)
