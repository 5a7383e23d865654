"""Batch operations over whole stores (merge, sync)."""

from .merge import build_global_summary, discard_store, merge_all, merge_stores, sync_merge

__all__ = [
    "build_global_summary",
    "discard_store",
    "merge_all",
    "merge_stores",
    "sync_merge",
]
