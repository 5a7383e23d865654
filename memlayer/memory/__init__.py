"""
Memory subsystem: consolidation and context assembly.

Provides:
- Rolling per-session summaries (replace semantics)
- Embedding indexing and cosine retrieval
- Token-budgeted prompt and message assembly
- MemoryService ask flow
"""

from .schemas import Message, MessageRole, RetrievedEntry
from .summarizer import RollingSummarizer
from .recall import EmbeddingIndexer, Retriever, cosine_similarity
from .context import ContextAssembler, estimate_tokens, fit_messages
from .service import MemoryService, create_memory_service

__all__ = [
    "Message",
    "MessageRole",
    "RetrievedEntry",
    "RollingSummarizer",
    "EmbeddingIndexer",
    "Retriever",
    "cosine_similarity",
    "ContextAssembler",
    "estimate_tokens",
    "fit_messages",
    "MemoryService",
    "create_memory_service",
]
