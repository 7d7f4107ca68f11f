"""
Tiered semantic cache engine.

Lookup falls through three tiers and promotes hits to the fastest one:

    START → TIER1_CHECK → TIER2_CHECK → TIER3_CHECK → HIT(tier) | MISS
                                                      HIT → PROMOTE → DONE

- Tier 1: InMemoryLRU keyed by the canonical key (normalized query + scope)
- Tier 2: EntryStore (SQLite), same key
- Tier 3: SimilarityIndex over query embeddings, same scope only

Each tier fails independently: a storage error is logged and the engine
carries on with the remaining tiers.

Usage:
    >>> engine = CacheEngine(general_cache_settings(Path("data/cache/general.db")))
    >>> async with engine:
    ...     result = await engine.lookup("What is my dog's name?", "u1", embedding)
    ...     if not result.hit:
    ...         payload = await build_context(...)
    ...         await engine.store("What is my dog's name?", "u1", embedding,
    ...                            ResultCategory.FACTUAL, payload)
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Sequence

from context_cache.config.settings import CacheSettings, ResultCategory
from context_cache.persist.hashing import entry_id, normalize_query

from .entry_store import EntryStore
from .errors import (
    CacheInitError,
    CorruptEntry,
    DimensionMismatch,
    InvalidationFailure,
    StorageError,
    StorageUnavailable,
)
from .lru import InMemoryLRU
from .lsh import SimilarityIndex
from .policy import TTLPolicy
from .predicates import mentions_entity, uses_chunk
from .schemas import CacheEntry, LookupResult, Tier

logger = logging.getLogger(__name__)


class CacheEngine:
    """
    Three-tier cache for retrieval results.

    One generic engine; the payload type and all tuning live in
    CacheSettings, so different caches are just differently configured
    instances. The caller owns the instance: construct it once, await
    init(), pass it to the pipeline, await close() on shutdown.

    Args:
        settings: Capacities, threshold, LSH and TTL configuration
        payload_type: Type used to validate payloads read back from disk
        store: Pre-built EntryStore (defaults to one at settings.db_path)
        clock: Time source, unix seconds
    """

    def __init__(
        self,
        settings: CacheSettings,
        payload_type: Any = Any,
        store: Optional[EntryStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.clock = clock
        self.policy = TTLPolicy(settings.ttl)

        self._memory: Optional[InMemoryLRU[CacheEntry]] = (
            InMemoryLRU(settings.memory_capacity) if settings.memory_capacity > 0 else None
        )
        if store is None and settings.db_path is not None:
            store = EntryStore(
                settings.db_path,
                max_entries=settings.persistent_capacity,
                prune_fraction=settings.prune_fraction,
                payload_type=payload_type,
            )
        self._store = store
        self._index = SimilarityIndex(settings.lsh_planes, seed=settings.lsh_seed, store=store)

        self._initialized = False
        self._degraded = False
        self._init_lock = asyncio.Lock()

        self.hits = {tier: 0 for tier in Tier}
        self.misses = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def degraded(self) -> bool:
        """True when the persistent tier is configured but not usable."""
        return self._degraded

    @property
    def index(self) -> SimilarityIndex:
        return self._index

    def _persistent(self) -> Optional[EntryStore]:
        if self._store is not None and self._store.is_open:
            return self._store
        return None

    async def init(self) -> None:
        """
        Open the persistent tier and reload the LSH index. Idempotent.

        Raises:
            CacheInitError: neither the memory tier nor the persistent tier is usable
        """
        async with self._init_lock:
            if self._initialized:
                return

            if self._store is not None:
                try:
                    await self._store.open()
                except StorageUnavailable as e:
                    self._degraded = True
                    logger.warning(
                        "[%s] Persistent tier unavailable, continuing in memory only: %s",
                        self.settings.name, e,
                    )

            if self._memory is None and self._persistent() is None:
                raise CacheInitError(
                    f"Cache '{self.settings.name}' has no usable tier",
                    details={
                        "memory_capacity": self.settings.memory_capacity,
                        "db_path": str(self.settings.db_path) if self.settings.db_path else None,
                    },
                )

            if self._persistent() is not None:
                await self._load_index()

            self._initialized = True
            logger.info(
                "[%s] Cache initialized (memory=%s, persistent=%s, buckets=%d)",
                self.settings.name,
                self._memory is not None,
                self._persistent() is not None,
                self._index.bucket_count,
            )

    async def _load_index(self) -> None:
        try:
            planes = await self._store.load_planes()
            buckets = await self._store.load_buckets()
        except StorageError as e:
            logger.warning("[%s] Could not load LSH index: %s", self.settings.name, e)
            return

        if planes is not None and planes.shape[0] != self.settings.lsh_planes:
            # Bit width changed: every persisted bucket key is meaningless now.
            logger.warning(
                "[%s] Discarding LSH index built with %d planes (configured: %d)",
                self.settings.name, planes.shape[0], self.settings.lsh_planes,
            )
            try:
                await self._store.clear_index()
            except StorageError as e:
                logger.warning("[%s] Could not discard LSH index: %s", self.settings.name, e)
            return

        self._index.restore(planes, buckets if planes is not None else {})

    async def close(self) -> None:
        """Release the persistent tier. The engine can be init()-ed again."""
        async with self._init_lock:
            if self._store is not None:
                await self._store.close()
            self._initialized = False

    async def __aenter__(self) -> "CacheEngine":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _require_init(self) -> None:
        if not self._initialized:
            raise CacheInitError(
                f"Cache '{self.settings.name}' used before init()",
                details={"name": self.settings.name},
            )

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def key_for(query: str, scope_id: str) -> str:
        """Canonical key of a query within a scope."""
        return entry_id(normalize_query(query), scope_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def lookup(
        self,
        query: str,
        scope_id: str,
        embedding: Optional[Sequence[float]] = None,
    ) -> LookupResult:
        """
        Find a cached result for a query.

        Args:
            query: Raw user query
            scope_id: Isolation scope (e.g. user id)
            embedding: Query embedding; enables the similarity tier

        Returns:
            LookupResult with hit flag, entry and serving tier
        """
        self._require_init()
        key = self.key_for(query, scope_id)
        now = self.clock()

        entry = self._check_memory(key, now)
        if entry is not None:
            entry.record_hit()
            return self._hit(entry, Tier.MEMORY)

        entry = await self._check_persistent(key, now)
        if entry is not None:
            entry.record_hit()
            if self._memory is not None:
                self._memory.set(key, entry)
            await self._persist_hit(entry)
            return self._hit(entry, Tier.PERSISTENT)

        if embedding is not None:
            match = await self._check_similar(embedding, scope_id, now)
            if match is not None:
                entry, similarity = match
                entry.record_hit()
                if self._memory is not None:
                    # Under the new query's key, so the next identical paraphrase hits tier 1.
                    self._memory.set(key, entry)
                await self._persist_hit(entry)
                return self._hit(entry, Tier.SIMILARITY, similarity)

        self.misses += 1
        logger.debug("[%s] Cache miss", self.settings.name)
        return LookupResult.miss()

    def _hit(self, entry: CacheEntry, tier: Tier, similarity: Optional[float] = None) -> LookupResult:
        self.hits[tier] += 1
        logger.debug("[%s] Tier %d hit: '%s'", self.settings.name, tier, entry.normalized_query[:50])
        return LookupResult(hit=True, entry=entry, tier=tier, similarity=similarity)

    def _check_memory(self, key: str, now: float) -> Optional[CacheEntry]:
        if self._memory is None:
            return None
        entry = self._memory.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            self._memory.discard(key)
            return None
        return entry

    async def _check_persistent(self, key: str, now: float) -> Optional[CacheEntry]:
        entry = await self._load_persistent(key)
        if entry is None or entry.is_expired(now):
            return None
        return entry

    async def _load_persistent(self, entry_id: str) -> Optional[CacheEntry]:
        """Tier-2 read with failures isolated to the tier."""
        store = self._persistent()
        if store is None:
            return None
        try:
            return await store.get(entry_id)
        except CorruptEntry as e:
            logger.warning("[%s] Evicting corrupt entry %s: %s", self.settings.name, entry_id, e)
            try:
                await store.delete(entry_id)
            except StorageError as delete_error:
                logger.warning("[%s] Could not evict %s: %s", self.settings.name, entry_id, delete_error)
            return None
        except StorageError as e:
            logger.warning("[%s] Persistent tier read failed: %s", self.settings.name, e)
            return None

    async def _load_candidate(self, entry_id: str) -> Optional[CacheEntry]:
        if self._memory is not None:
            entry = self._memory.peek(entry_id)
            if entry is not None:
                return entry
        return await self._load_persistent(entry_id)

    async def _check_similar(
        self, embedding: Sequence[float], scope_id: str, now: float
    ) -> Optional[tuple[CacheEntry, float]]:
        try:
            return await self._index.find_similar(
                embedding,
                scope_id,
                self.settings.similarity_threshold,
                self._load_candidate,
                now=now,
            )
        except (DimensionMismatch, ValueError) as e:
            logger.warning("[%s] Skipping similarity tier: %s", self.settings.name, e)
            return None

    async def _put_quietly(self, entry: CacheEntry) -> None:
        store = self._persistent()
        if store is None:
            return
        try:
            await store.put(entry)
        except StorageError as e:
            logger.warning("[%s] Persistent tier write failed: %s", self.settings.name, e)

    async def _persist_hit(self, entry: CacheEntry) -> None:
        """Increment the stored hit count; the in-memory count is already bumped."""
        store = self._persistent()
        if store is None:
            return
        try:
            count = await store.record_hit(entry.id)
        except (CorruptEntry, StorageError) as e:
            logger.warning("[%s] Could not record hit for %s: %s", self.settings.name, entry.id, e)
            return
        if count is not None and count > entry.hit_count:
            entry.hit_count = count

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    async def store(
        self,
        query: str,
        scope_id: str,
        embedding: Optional[Sequence[float]],
        result_category: ResultCategory,
        payload: Any,
        confidence: Optional[float] = None,
    ) -> CacheEntry:
        """
        Cache a freshly computed result in every tier.

        Re-storing the same query in the same scope replaces the entry.

        Returns:
            The stored CacheEntry
        """
        self._require_init()
        normalized = normalize_query(query)
        category = ResultCategory(result_category)

        entry = CacheEntry(
            id=entry_id(normalized, scope_id),
            original_query=query,
            normalized_query=normalized,
            query_embedding=[float(x) for x in embedding] if embedding is not None else None,
            scope_id=scope_id,
            result_category=category,
            payload=payload,
            confidence=confidence,
            created_at=self.clock(),
            hit_count=0,
            ttl=self.policy.ttl_for(category),
        )

        if self._memory is not None:
            # Paraphrase keys promoted from similarity hits still point at the old version.
            self._memory.discard_where(lambda cached: cached.id == entry.id)
            self._memory.set(entry.id, entry)
        await self._put_quietly(entry)

        if entry.query_embedding is not None:
            try:
                await self._index.add(entry.query_embedding, entry.id)
            except (DimensionMismatch, ValueError) as e:
                logger.warning("[%s] Not indexing embedding: %s", self.settings.name, e)

        await self._prune()
        logger.debug(
            "[%s] Stored entry: query='%s' category=%s",
            self.settings.name, normalized[:50], category.value,
        )
        return entry

    async def _prune(self) -> None:
        store = self._persistent()
        if store is None:
            return
        try:
            pruned = await store.prune_if_needed()
        except StorageError as e:
            logger.warning("[%s] Pruning failed: %s", self.settings.name, e)
            return
        if pruned:
            await self._index.discard(pruned)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def invalidate_by_scope(self, scope_id: str) -> int:
        """
        Drop every cached result of a scope from all tiers.

        Tier 1 is cleared wholesale; tier-3 buckets lose the deleted ids.

        Returns:
            Number of persistent entries deleted

        Raises:
            InvalidationFailure: the persistent delete failed
        """
        self._require_init()
        if self._memory is not None:
            self._memory.clear()

        deleted: list[str] = []
        store = self._persistent()
        if store is not None:
            try:
                deleted = await store.delete_scope(scope_id)
            except StorageError as e:
                raise InvalidationFailure(f"scope {scope_id}", [], [], original_error=e) from e

        if store is None:
            # Without tier 2 the index only holds ids that lived in tier 1, now cleared.
            self._index.clear()
        else:
            await self._index.discard(deleted)

        logger.info("[%s] Invalidated scope %s (%d entries)", self.settings.name, scope_id, len(deleted))
        return len(deleted)

    async def invalidate_by_predicate(
        self,
        predicate: Callable[[Any], bool],
        description: str = "predicate",
    ) -> int:
        """
        Drop every entry whose payload matches `predicate`.

        Used when source data a result depends on changes (an entity, a chunk).

        Returns:
            Number of entries removed (persistent tier, else memory tier)

        Raises:
            InvalidationFailure: some persistent deletes failed; the rest
                stay deleted
        """
        self._require_init()

        def matches(entry: CacheEntry) -> bool:
            return bool(predicate(entry.payload))

        removed_keys: list[str] = []
        removed_ids: set[str] = set()
        if self._memory is not None:
            for key in self._memory.keys():
                entry = self._memory.peek(key)
                if entry is not None and matches(entry):
                    self._memory.discard(key)
                    removed_keys.append(key)
                    removed_ids.add(entry.id)

        store = self._persistent()
        deleted: list[str] = []
        if store is not None:
            try:
                deleted = await store.delete_matching(matches, description)
            except InvalidationFailure as e:
                await self._index.discard(removed_ids | set(e.deleted))
                raise
            except StorageError as e:
                await self._index.discard(removed_ids)
                raise InvalidationFailure(description, [], [], original_error=e) from e

        await self._index.discard(removed_ids | set(deleted))
        count = len(deleted) if store is not None else len(removed_keys)
        logger.info("[%s] Invalidated %d entries matching %s", self.settings.name, count, description)
        return count

    async def invalidate_by_entity(self, entity_name: str) -> int:
        """Drop results whose payload mentions an entity (case-insensitive)."""
        return await self.invalidate_by_predicate(
            mentions_entity(entity_name), description=f"entity {entity_name}"
        )

    async def invalidate_by_chunk(self, chunk_id: str) -> int:
        """Drop results assembled from a given source chunk."""
        return await self.invalidate_by_predicate(
            uses_chunk(chunk_id), description=f"chunk {chunk_id}"
        )

    async def invalidate_all(self) -> None:
        """Clear every tier, the bucket index and the hyperplanes, then reclaim disk space."""
        self._require_init()
        if self._memory is not None:
            self._memory.clear()
        self._index.clear()

        store = self._persistent()
        if store is not None:
            try:
                await store.clear()
                await store.vacuum()
            except StorageError as e:
                raise InvalidationFailure("all entries", [], [], original_error=e) from e
        logger.info("[%s] All cache tiers cleared", self.settings.name)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def get_stats(self) -> dict:
        """
        Hit/miss counters and tier sizes.

        Returns:
            Dict with hits per tier, misses, hit_rate, entries,
            memory_entries, oldest/newest timestamps, buckets, degraded
        """
        total_hits = sum(self.hits.values())
        total = total_hits + self.misses

        persistent = {"count": 0, "total_bytes": 0, "oldest_created_at": 0.0, "newest_created_at": 0.0}
        store = self._persistent()
        if store is not None:
            try:
                persistent = await store.stats()
            except StorageError as e:
                logger.warning("[%s] Could not read persistent stats: %s", self.settings.name, e)

        return {
            "name": self.settings.name,
            "hits": {tier.name.lower(): count for tier, count in self.hits.items()},
            "misses": self.misses,
            "hit_rate": total_hits / total if total > 0 else 0.0,
            "entries": persistent["count"],
            "total_bytes": persistent["total_bytes"],
            "oldest_entry": persistent["oldest_created_at"],
            "newest_entry": persistent["newest_created_at"],
            "memory_entries": len(self._memory) if self._memory is not None else 0,
            "buckets": self._index.bucket_count,
            "degraded": self._degraded,
        }

    def reset_stats(self) -> None:
        """Reset hit/miss counters."""
        self.hits = {tier: 0 for tier in Tier}
        self.misses = 0
