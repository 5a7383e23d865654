"""
Typed records for every table the memory store owns.

Constructors enforce the row invariants (trimmed non-blank statement text,
enum-checked roles and kinds, ordered summary ranges).
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# Type aliases
StatementKind = Literal["fact", "desire", "opinion", "backlog"]
ChatRole = Literal["user", "assistant"]
EmbeddingKind = Literal["statement", "chat_user", "chat_assistant", "chat_summary"]

STATEMENT_KINDS = ("fact", "desire", "opinion", "backlog")


def utc_now() -> str:
    """Sortable ISO-8601 UTC timestamp with fixed microsecond width."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class StatementRecord(BaseModel):
    """A durable user statement (fact, desire, opinion or backlog item)."""

    id: Optional[int] = None
    kind: StatementKind
    text: str = Field(..., description="Trimmed, non-blank statement text")
    created_at: str = Field(default_factory=utc_now)
    source_node: str = Field(..., min_length=1)

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("statement text must not be blank")
        return v


class ChatMessage(BaseModel):
    """One persisted chat turn."""

    id: Optional[int] = None
    role: ChatRole
    model: Optional[str] = None
    content: str
    session: str = Field("default", min_length=1)
    created_at: str = Field(default_factory=utc_now)
    responded_at: Optional[str] = None
    source_node: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _responded_only_for_assistant(self) -> "ChatMessage":
        if self.responded_at is not None and self.role != "assistant":
            raise ValueError("responded_at is only valid on assistant turns")
        return self


class ChatSummary(BaseModel):
    """Rolling summary covering an inclusive chat id range of one session."""

    id: Optional[int] = None
    session: str = Field(..., min_length=1)
    start_id: int
    end_id: int
    summary: str
    created_at: str = Field(default_factory=utc_now)
    source_node: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_range(self) -> "ChatSummary":
        if self.end_id < self.start_id:
            raise ValueError("end_id must be >= start_id")
        return self


class EmbeddingRecord(BaseModel):
    """Embedding vector indexing a statement, chat turn or summary."""

    id: Optional[int] = None
    kind: EmbeddingKind
    row_id: Optional[int] = None
    session: Optional[str] = None
    content: str
    embedding: List[float]
    created_at: str = Field(default_factory=utc_now)
    source_node: str = Field(..., min_length=1)


class GlobalSummary(BaseModel):
    """Singleton summary of the whole merged history."""

    id: Optional[int] = None
    summary: str
    created_at: str = Field(default_factory=utc_now)
    source_node: str = Field(..., min_length=1)
