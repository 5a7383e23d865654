"""
Pydantic schemas for FastAPI endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from memlayer.persist.records import ChatMessage, ChatSummary, StatementKind, StatementRecord


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Service status")
    node: str = Field(..., description="Node id writing records")
    store: str = Field(..., description="Path of the memory store")
    backend_available: bool = Field(..., description="Whether the generation backend answers")


class AskRequest(BaseModel):
    """Request model for /api/ask endpoint."""

    prompt: str = Field(..., description="User prompt")
    model: Optional[str] = Field(default=None, description="Model name (default: configured model)")
    session: Optional[str] = Field(default=None, description="Session name (default: configured session)")
    system: Optional[str] = Field(default=None, description="System prompt override")


class AskResponse(BaseModel):
    """Response model for /api/ask endpoint."""

    answer: str = Field(..., description="Generated answer")
    session: str = Field(..., description="Session the turn was recorded in")
    model: str = Field(..., description="Model used")


class StatementsRequest(BaseModel):
    """Request to record one or more statements of a kind."""

    kind: StatementKind = Field(..., description="fact, desire, opinion or backlog")
    texts: List[str] = Field(..., min_length=1, description="Statement texts (blank ones are skipped)")


class StatementsResponse(BaseModel):
    statements: List[StatementRecord]
    count: int


class SessionResponse(BaseModel):
    """History and rolling summary of one session."""

    session: str
    messages: List[ChatMessage]
    summary: Optional[ChatSummary] = None
