"""
Tiered semantic cache for retrieval results.

Provides:
- InMemoryLRU: bounded in-process tier
- EntryStore: SQLite-backed persistent tier
- SimilarityIndex: LSH tier over query embeddings
- CacheEngine: lookup/store/invalidate across the three tiers
- cached_retrieval: lookup → compute → store helper for the pipeline
"""

from .schemas import CacheEntry, ContextPayload, LookupResult, Tier
from .errors import (
    CacheError,
    CacheInitError,
    CorruptEntry,
    DimensionMismatch,
    HyperplanesFixed,
    InvalidationFailure,
    StorageError,
    StorageUnavailable,
)
from .policy import TTLPolicy
from .lru import InMemoryLRU
from .entry_store import EntryStore
from .lsh import SimilarityIndex, cosine_similarity
from .predicates import mentions_entity, uses_chunk
from .engine import CacheEngine
from .retrieval_cache import RetrievalRequest, cached_retrieval
from .factory import CacheEngines, build_engines

__all__ = [
    "CacheEntry",
    "ContextPayload",
    "LookupResult",
    "Tier",
    "CacheError",
    "CacheInitError",
    "CorruptEntry",
    "DimensionMismatch",
    "HyperplanesFixed",
    "InvalidationFailure",
    "StorageError",
    "StorageUnavailable",
    "TTLPolicy",
    "InMemoryLRU",
    "EntryStore",
    "SimilarityIndex",
    "cosine_similarity",
    "mentions_entity",
    "uses_chunk",
    "CacheEngine",
    "RetrievalRequest",
    "cached_retrieval",
    "CacheEngines",
    "build_engines",
]
