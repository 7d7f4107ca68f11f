"""
Tier 3: locality-sensitive hashing over query embeddings.

Random-hyperplane LSH: each of P hyperplanes contributes one bit, 1 when the
embedding lies on its non-negative side. Similar vectors tend to share a bit
string, so a lookup only scores the entries in its own bucket and in the P
buckets one bit away, instead of scanning the whole cache.

The hyperplane matrix is generated once, on the first embedding seen, and
must not change afterwards: every bucket key depends on it. It is persisted
next to the buckets and restored on startup; restore() refuses to replace an
established matrix.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, Sequence

import numpy as np

from .entry_store import EntryStore
from .errors import DimensionMismatch, HyperplanesFixed, StorageError
from .schemas import CacheEntry

logger = logging.getLogger(__name__)

EntryLoader = Callable[[str], Awaitable[Optional[CacheEntry]]]


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 for vectors of different length or with zero norm.
    """
    v1 = np.asarray(vec1, dtype=np.float64)
    v2 = np.asarray(vec2, dtype=np.float64)
    if v1.shape != v2.shape:
        return 0.0

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(v1, v2) / (norm1 * norm2))


class SimilarityIndex:
    """
    Bucket index from LSH bit strings to entry ids.

    Buckets are scope-agnostic; find_similar() filters candidates by scope
    after loading them, so an id left behind by deferred cleanup can never
    leak across scopes.

    Attributes:
        num_planes: Number of hyperplanes (bits per hash)
        store: Optional persistent store for buckets and hyperplanes
    """

    def __init__(
        self,
        num_planes: int = 12,
        seed: Optional[int] = None,
        store: Optional[EntryStore] = None,
    ):
        if num_planes <= 0:
            raise ValueError("num_planes must be positive")
        self.num_planes = num_planes
        self.store = store
        self._rng = np.random.default_rng(seed)

        self._planes: Optional[np.ndarray] = None
        self._planes_saved = False
        self._buckets: dict[str, list[str]] = {}
        self._bucket_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Hyperplanes
    # ------------------------------------------------------------------

    @property
    def planes(self) -> Optional[np.ndarray]:
        return self._planes

    @property
    def dimensions(self) -> Optional[int]:
        return None if self._planes is None else self._planes.shape[1]

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def restore(self, planes: Optional[np.ndarray], buckets: dict[str, list[str]]) -> None:
        """
        Load previously persisted hyperplanes and buckets.

        Raises:
            HyperplanesFixed: hyperplanes are already established and differ
        """
        if planes is not None:
            planes = np.asarray(planes, dtype=np.float64)
            if self._planes is not None and not np.array_equal(self._planes, planes):
                raise HyperplanesFixed(
                    "LSH hyperplanes are already established; regenerating them would "
                    "orphan every bucket",
                    details={"num_planes": self.num_planes},
                )
            if planes.shape[0] != self.num_planes:
                raise ValueError(
                    f"Persisted hyperplanes have {planes.shape[0]} planes, index uses {self.num_planes}"
                )
            self._planes = planes
            self._planes_saved = True

        for bucket_hash, ids in buckets.items():
            merged = self._buckets.setdefault(bucket_hash, [])
            for entry_id in ids:
                if entry_id not in merged:
                    merged.append(entry_id)

    def _vector(self, embedding: Sequence[float]) -> np.ndarray:
        vec = np.asarray(embedding, dtype=np.float64)
        if vec.ndim != 1 or vec.size == 0:
            raise ValueError(f"Embedding must be a non-empty 1-D vector, got shape {vec.shape}")

        if self._planes is None:
            self._planes = self._rng.uniform(-0.5, 0.5, size=(self.num_planes, vec.size))
            self._planes_saved = False
            logger.debug("Generated %d LSH hyperplanes of dimension %d", self.num_planes, vec.size)
        elif vec.size != self._planes.shape[1]:
            raise DimensionMismatch(self._planes.shape[1], vec.size)
        return vec

    def compute_hash(self, embedding: Sequence[float]) -> str:
        """
        P-bit hash of an embedding.

        Bit i is "1" when dot(embedding, plane_i) >= 0. The first call fixes
        the dimensionality.

        Raises:
            DimensionMismatch: embedding length differs from the hyperplanes
        """
        vec = self._vector(embedding)
        sides = self._planes @ vec >= 0
        return "".join("1" if side else "0" for side in sides)

    @staticmethod
    def neighbors(bucket_hash: str) -> list[str]:
        """All hashes at Hamming distance 1."""
        flipped = {"0": "1", "1": "0"}
        return [
            bucket_hash[:i] + flipped[bit] + bucket_hash[i + 1:]
            for i, bit in enumerate(bucket_hash)
        ]

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def _lock_for(self, bucket_hash: str) -> asyncio.Lock:
        lock = self._bucket_locks.get(bucket_hash)
        if lock is None:
            lock = self._bucket_locks[bucket_hash] = asyncio.Lock()
        return lock

    def _can_persist(self) -> bool:
        return self.store is not None and self.store.is_open

    async def _save_planes(self) -> None:
        if self._planes_saved or not self._can_persist():
            return
        try:
            await self.store.save_planes(self._planes)
            self._planes_saved = True
        except StorageError as e:
            logger.warning("Could not persist LSH hyperplanes: %s", e)

    async def _persist_bucket(self, bucket_hash: str, ids: list[str]) -> None:
        if not self._can_persist():
            return
        try:
            if ids:
                await self.store.put_bucket(bucket_hash, ids)
            else:
                await self.store.delete_bucket(bucket_hash)
        except StorageError as e:
            logger.warning("Could not persist LSH bucket %s: %s", bucket_hash, e)

    async def add(self, embedding: Sequence[float], entry_id: str) -> str:
        """
        Index an entry under the hash of its embedding.

        Idempotent per bucket. The bucket is persisted under a per-bucket
        lock, so a later snapshot never overwrites an earlier append.

        Returns:
            The bucket hash

        Raises:
            DimensionMismatch: embedding length differs from the hyperplanes
        """
        bucket_hash = self.compute_hash(embedding)
        await self._save_planes()

        async with self._lock_for(bucket_hash):
            ids = self._buckets.setdefault(bucket_hash, [])
            if entry_id not in ids:
                ids.append(entry_id)
            await self._persist_bucket(bucket_hash, list(ids))
        return bucket_hash

    async def discard(self, entry_ids: Iterable[str]) -> int:
        """
        Remove ids from every bucket. Empty buckets are dropped.

        Returns:
            Number of bucket slots removed
        """
        doomed = set(entry_ids)
        if not doomed:
            return 0

        removed = 0
        for bucket_hash in list(self._buckets):
            async with self._lock_for(bucket_hash):
                ids = self._buckets.get(bucket_hash)
                if not ids or doomed.isdisjoint(ids):
                    continue
                kept = [i for i in ids if i not in doomed]
                removed += len(ids) - len(kept)
                if kept:
                    self._buckets[bucket_hash] = kept
                else:
                    del self._buckets[bucket_hash]
                await self._persist_bucket(bucket_hash, kept)
        return removed

    def clear(self) -> None:
        """Forget all buckets and the hyperplanes."""
        self._buckets.clear()
        self._bucket_locks.clear()
        self._planes = None
        self._planes_saved = False

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def candidates(self, bucket_hash: str) -> list[str]:
        """Unique ids in the bucket and its Hamming-1 neighbors."""
        seen: dict[str, None] = {}
        for key in [bucket_hash, *self.neighbors(bucket_hash)]:
            for entry_id in self._buckets.get(key, ()):
                seen.setdefault(entry_id, None)
        return list(seen)

    async def find_similar(
        self,
        query_embedding: Sequence[float],
        scope_id: str,
        threshold: float,
        loader: EntryLoader,
        now: Optional[float] = None,
    ) -> Optional[tuple[CacheEntry, float]]:
        """
        Best entry in the same scope with cosine similarity strictly above threshold.

        Args:
            query_embedding: Embedding of the incoming query
            scope_id: Only entries of this scope are eligible
            threshold: Similarity a candidate must exceed
            loader: Async fetch of an entry by id (None if gone)
            now: Reference time for expiry checks

        Returns:
            (entry, similarity) or None

        Raises:
            DimensionMismatch: embedding length differs from the hyperplanes
        """
        if self._planes is None or not self._buckets:
            return None

        bucket_hash = self.compute_hash(query_embedding)
        query = np.asarray(query_embedding, dtype=np.float64)

        best: Optional[CacheEntry] = None
        best_score = threshold
        for entry_id in self.candidates(bucket_hash):
            entry = await loader(entry_id)
            if entry is None or entry.scope_id != scope_id:
                continue
            if entry.query_embedding is None or entry.is_expired(now):
                continue

            score = cosine_similarity(query, entry.query_embedding)
            if score > best_score:
                best, best_score = entry, score

        if best is None:
            return None

        logger.debug(
            "LSH match: similarity=%.3f original='%s'", best_score, best.original_query[:50]
        )
        return best, best_score
