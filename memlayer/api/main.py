"""Main FastAPI application and server startup."""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException

from memlayer.errors import (
    AskFailed,
    BackendError,
    InvalidMergePath,
    InvalidRequest,
    MemoryLayerError,
)
from memlayer.memory.service import MemoryService, create_memory_service

from .schemas import (
    AskRequest,
    AskResponse,
    HealthResponse,
    SessionResponse,
    StatementsRequest,
    StatementsResponse,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="memlayer API",
    description="Memory consolidation and context assembly for a local assistant",
    version="0.1.0",
)

# Service singleton (created on first use)
_service: Optional[MemoryService] = None


def get_service() -> MemoryService:
    """Dependency to get the memory service."""
    global _service
    if _service is None:
        _service = create_memory_service()
    return _service


def status_for(error: MemoryLayerError) -> int:
    """HTTP status code for a memory layer error."""
    if isinstance(error, (InvalidRequest, InvalidMergePath)):
        return 400
    if isinstance(error, BackendError):
        return 502
    if isinstance(error, AskFailed) and isinstance(error.cause, BackendError):
        return 502
    return 500


def http_error(error: MemoryLayerError) -> HTTPException:
    return HTTPException(status_code=status_for(error), detail=error.to_dict())


@app.on_event("shutdown")
async def shutdown_event():
    """Close the store on shutdown."""
    global _service
    if _service is not None:
        _service.close()
        _service = None


@app.get("/health", response_model=HealthResponse)
async def health(service: MemoryService = Depends(get_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        node=service.settings.node.id,
        store=str(service.db.db_path),
        backend_available=service.generator.is_available(),
    )


@app.post("/api/ask", response_model=AskResponse)
def ask(request: AskRequest, service: MemoryService = Depends(get_service)):
    """
    Answer a prompt with memory-aware context.

    The user turn is persisted even when generation fails.
    """
    session = service.resolve_session(request.session)
    model = request.model or service.settings.ollama.default_model
    try:
        answer = service.ask(request.prompt, model=model, session=session, system=request.system)
    except MemoryLayerError as e:
        raise http_error(e)
    return AskResponse(answer=answer, session=session, model=model)


@app.post("/api/statements", response_model=StatementsResponse)
def add_statements(request: StatementsRequest, service: MemoryService = Depends(get_service)):
    """Record facts, desires, opinions or backlog items."""
    try:
        records = service.remember(request.kind, *request.texts)
    except MemoryLayerError as e:
        raise http_error(e)
    return StatementsResponse(statements=records, count=len(records))


@app.get("/api/statements", response_model=StatementsResponse)
def list_statements(kind: Optional[str] = None, service: MemoryService = Depends(get_service)):
    try:
        records = service.statements(kind)
    except MemoryLayerError as e:
        raise http_error(e)
    return StatementsResponse(statements=records, count=len(records))


@app.get("/api/sessions/{session}", response_model=SessionResponse)
def get_session(session: str, service: MemoryService = Depends(get_service)):
    """Chat history and current rolling summary of a session."""
    try:
        messages = service.chat_history(session)
        summary = service.current_summary(session)
    except MemoryLayerError as e:
        raise http_error(e)
    return SessionResponse(session=session, messages=messages, summary=summary)
