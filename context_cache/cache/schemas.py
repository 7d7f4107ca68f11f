"""
Cache data models.

Defines the CacheEntry record shared by all tiers and the lookup result.
"""

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from context_cache.config.settings import ResultCategory


class Tier(IntEnum):
    """Cache tier that served a hit."""
    MEMORY = 1
    PERSISTENT = 2
    SIMILARITY = 3


class CacheEntry(BaseModel):
    """
    One memoized retrieval result.

    `id` is derived from (normalized_query, scope_id) only, so re-storing the
    same query in the same scope replaces the whole entry.
    """

    id: str = Field(..., description="blake2b digest of normalized query + scope")
    original_query: str = Field(..., description="Query text as the caller sent it")
    normalized_query: str = Field(..., description="Canonical form used for the key")
    query_embedding: Optional[List[float]] = Field(None, description="Query embedding, if any")
    scope_id: str = Field(..., description="Isolation boundary, e.g. a user id")
    result_category: ResultCategory = Field(..., description="Category driving the TTL")

    payload: Any = Field(None, description="Opaque cached result")
    confidence: Optional[float] = Field(None, description="Producer's confidence in the payload")

    created_at: float = Field(default_factory=time.time, description="Unix timestamp")
    hit_count: int = Field(0, ge=0, description="Hits across all tiers")
    ttl: float = Field(..., gt=0, description="Lifetime in seconds")

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: Optional[float] = None) -> bool:
        """True once `now` is past created_at + ttl."""
        if now is None:
            now = time.time()
        return now > self.expires_at

    def record_hit(self) -> None:
        self.hit_count += 1


class ContextPayload(BaseModel):
    """
    Assembled retrieval context, the payload of the general cache.

    `chunks` items are expected to carry an "id"; `entities` items an
    "entity" name. Both are used by scoped invalidation helpers.
    """

    system_prompt: str = ""
    chunks: List[Dict[str, Any]] = Field(default_factory=list)
    entities: List[Dict[str, Any]] = Field(default_factory=list)


@dataclass
class LookupResult:
    """Outcome of CacheEngine.lookup()."""

    hit: bool
    entry: Optional[CacheEntry] = None
    tier: Optional[Tier] = None
    similarity: Optional[float] = None

    @classmethod
    def miss(cls) -> "LookupResult":
        return cls(hit=False)

    @property
    def payload(self) -> Any:
        return self.entry.payload if self.entry is not None else None
