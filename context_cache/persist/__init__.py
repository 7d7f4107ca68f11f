"""
Persistence layer for the cache.

Provides:
- Query normalization and stable hashing for cache keys
- SQLite-backed store for entries, LSH buckets and hyperplanes
- Cache directory management
"""

from .hashing import entry_id, normalize_query, stable_hash
from .paths import CachePaths, ensure_dirs
from .sqlite_store import KVStore

__all__ = [
    "entry_id",
    "normalize_query",
    "stable_hash",
    "CachePaths",
    "ensure_dirs",
    "KVStore",
]
