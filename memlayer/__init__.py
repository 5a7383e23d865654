"""
memlayer: memory consolidation and context assembly for a local assistant.

Persists statements and chat turns in SQLite, keeps rolling per-session
summaries, assembles token-budgeted prompts for Ollama, and merges stores
grown on different nodes.
"""

from memlayer.config.settings import Settings
from memlayer.errors import MemoryLayerError
from memlayer.memory.service import MemoryService, create_memory_service
from memlayer.ops.merge import merge_all, merge_stores, sync_merge
from memlayer.persist.sqlite_store import MemoryDB

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "MemoryLayerError",
    "MemoryService",
    "create_memory_service",
    "merge_all",
    "merge_stores",
    "sync_merge",
    "MemoryDB",
]
