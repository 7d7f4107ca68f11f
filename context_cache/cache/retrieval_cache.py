"""
Retrieval cache - memoize the retrieval pipeline's context assembly.

Wraps the lookup → compute → store contract the pipeline follows around an
expensive retrieval step.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from context_cache.config.settings import ResultCategory

from .engine import CacheEngine
from .schemas import LookupResult


@dataclass
class RetrievalRequest:
    """Key material the pipeline supplies for one query."""

    raw_query: str
    scope_id: str
    result_category: ResultCategory
    embedding: Optional[Sequence[float]] = None
    confidence: Optional[float] = None


async def cached_retrieval(
    engine: CacheEngine,
    request: RetrievalRequest,
    compute: Callable[[], Awaitable[Any]],
    use_cache: bool = True,
) -> tuple[Any, LookupResult]:
    """
    Retrieve with caching.

    Args:
        engine: Initialized CacheEngine
        request: Query, scope, category and optional embedding
        compute: Async callable producing the payload on a miss
        use_cache: Whether to use the cache (if False, always computes)

    Returns:
        Tuple of (payload, lookup_result)
        - payload: cached or freshly computed result
        - lookup_result: hit flag and serving tier (a miss when computed)
    """
    if use_cache:
        result = await engine.lookup(request.raw_query, request.scope_id, request.embedding)
        if result.hit:
            return result.payload, result

    payload = await compute()

    if use_cache:
        await engine.store(
            request.raw_query,
            request.scope_id,
            request.embedding,
            request.result_category,
            payload,
            confidence=request.confidence,
        )

    return payload, LookupResult.miss()
