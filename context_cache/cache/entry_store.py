"""
Tier 2: durable entry store.

Async facade over the SQLite KVStore. Blocking calls run in worker threads
(asyncio.to_thread) so lookups on the event loop never stall on disk I/O.

Records:
- value: JSON of the CacheEntry without its embedding
- embedding: float32 bytes
"""

import asyncio
import json
import logging
import math
import sqlite3
import weakref
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import numpy as np
from pydantic import TypeAdapter, ValidationError

from context_cache.persist.sqlite_store import EntryRow, KVStore

from .errors import (
    CorruptEntry,
    InvalidationFailure,
    PayloadNotSerialisable,
    StorageError,
    StorageUnavailable,
)
from .schemas import CacheEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

PLANES_META_KEY = "lsh_planes"


class EntryStore:
    """
    Persistent CacheEntry store with secondary lookups by scope and age.

    Writes and deletes of the same id are serialized with per-id asyncio
    locks; different ids proceed independently. Pruning keeps the entry
    count near `max_entries` by deleting the oldest `prune_fraction`.

    Usage:
        >>> store = EntryStore(Path("data/cache/general.db"), max_entries=10_000)
        >>> await store.open()
        >>> await store.put(entry)
        >>> await store.get(entry.id)
        >>> await store.close()
    """

    def __init__(
        self,
        db_path: Path,
        max_entries: int = 10_000,
        prune_fraction: float = 0.1,
        payload_type: Any = Any,
    ):
        """
        Initialize entry store.

        Args:
            db_path: Path to the SQLite file
            max_entries: Ceiling that triggers pruning
            prune_fraction: Share of max_entries removed per prune
            payload_type: Type used to validate payloads read back from disk
        """
        self.db_path = Path(db_path)
        self.max_entries = max_entries
        self.prune_fraction = prune_fraction
        self._payload = TypeAdapter(payload_type)

        self._kv: Optional[KVStore] = None
        self._key_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._prune_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._kv is not None

    async def open(self) -> None:
        """Open the database. Idempotent."""
        if self._kv is not None:
            return
        try:
            self._kv = await asyncio.to_thread(KVStore, self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailable(
                f"Cannot open cache database at {self.db_path}",
                details={"db_path": str(self.db_path)},
                original_error=e,
            ) from e
        logger.debug("Opened cache database %s", self.db_path)

    async def close(self) -> None:
        if self._kv is None:
            return
        kv, self._kv = self._kv, None
        await asyncio.to_thread(kv.close)

    async def __aenter__(self) -> "EntryStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run fn(kv, *args) in a worker thread."""
        if self._kv is None:
            raise StorageError("Entry store is not open", details={"db_path": str(self.db_path)})
        try:
            return await asyncio.to_thread(fn, self._kv, *args)
        except sqlite3.Error as e:
            raise StorageError(
                f"SQLite error in {getattr(fn, '__name__', fn)}",
                details={"db_path": str(self.db_path)},
                original_error=e,
            ) from e

    def _lock_for(self, entry_id: str) -> asyncio.Lock:
        lock = self._key_locks.get(entry_id)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[entry_id] = lock
        return lock

    # ------------------------------------------------------------------
    # Codec
    # ------------------------------------------------------------------

    def _encode(self, entry: CacheEntry) -> EntryRow:
        doc = entry.model_dump(mode="json", exclude={"query_embedding", "payload"})
        doc["payload"] = self._payload.dump_python(entry.payload, mode="json")
        embedding = None
        if entry.query_embedding is not None:
            embedding = np.asarray(entry.query_embedding, dtype=np.float32).tobytes()
        return (
            entry.id,
            entry.scope_id,
            entry.created_at,
            json.dumps(doc, ensure_ascii=False).encode("utf-8"),
            embedding,
        )

    def _decode(self, row: EntryRow) -> CacheEntry:
        entry_id, scope_id, created_at, value, embedding = row
        try:
            doc = json.loads(bytes(value).decode("utf-8"))
            if not isinstance(doc, dict):
                raise ValueError("record is not an object")
            doc["payload"] = self._payload.validate_python(doc.get("payload"))
            if embedding is not None:
                doc["query_embedding"] = np.frombuffer(embedding, dtype=np.float32).tolist()
            entry = CacheEntry.model_validate(doc)
        except (UnicodeDecodeError, ValidationError, ValueError, TypeError) as e:
            raise CorruptEntry(entry_id, e) from e

        if entry.id != entry_id or entry.scope_id != scope_id:
            raise CorruptEntry(entry_id, ValueError("record does not match its row key"))
        return entry

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def get(self, entry_id: str) -> Optional[CacheEntry]:
        """
        Fetch an entry by id.

        Raises:
            CorruptEntry: the stored record fails validation
            StorageError: SQLite failure
        """
        row = await self._run(KVStore.get_entry, entry_id)
        if row is None:
            return None
        return self._decode(row)

    async def put(self, entry: CacheEntry) -> None:
        """
        Insert or replace an entry (upsert by id).

        Raises:
            PayloadNotSerialisable: the payload cannot be encoded as JSON
            StorageError: SQLite failure
        """
        try:
            row = self._encode(entry)
        except (ValueError, TypeError) as e:
            # PydanticSerializationError is a ValueError
            raise PayloadNotSerialisable(entry.id, e) from e
        async with self._lock_for(entry.id):
            await self._run(KVStore.put_entry, row)

    async def record_hit(self, entry_id: str) -> Optional[int]:
        """
        Increment the stored hit count of an entry under its key lock.

        Returns:
            The new hit count, or None if the entry is gone

        Raises:
            CorruptEntry: the stored record fails validation
            StorageError: SQLite failure
        """
        async with self._lock_for(entry_id):
            row = await self._run(KVStore.get_entry, entry_id)
            if row is None:
                return None
            stored = self._decode(row)
            stored.record_hit()
            await self._run(KVStore.put_entry, self._encode(stored))
            return stored.hit_count

    async def delete(self, entry_id: str) -> bool:
        async with self._lock_for(entry_id):
            return await self._run(KVStore.delete_entry, entry_id)

    async def delete_scope(self, scope_id: str) -> list[str]:
        """Delete all entries of a scope. Returns deleted ids."""
        deleted = await self._run(KVStore.delete_scope, scope_id)
        logger.info("Deleted %d cache entries for scope %s", len(deleted), scope_id)
        return deleted

    async def delete_matching(
        self,
        predicate: Callable[[CacheEntry], bool],
        description: str = "predicate",
    ) -> list[str]:
        """
        Delete every entry for which predicate(entry) is true.

        Records that cannot be decoded are skipped. Deletion continues past
        per-entry failures; if any occurred, InvalidationFailure reports them
        after the rest of the batch has been processed.

        Returns:
            Ids of deleted entries
        """
        matches = await self._run(self._scan, predicate)

        deleted: list[str] = []
        failed: list[str] = []
        last_error: Optional[BaseException] = None
        for entry_id in matches:
            try:
                if await self.delete(entry_id):
                    deleted.append(entry_id)
            except StorageError as e:
                failed.append(entry_id)
                last_error = e

        if failed:
            raise InvalidationFailure(description, deleted, failed, original_error=last_error)

        logger.info("Deleted %d cache entries matching %s", len(deleted), description)
        return deleted

    def _scan(self, kv: KVStore, predicate: Callable[[CacheEntry], bool]) -> list[str]:
        """Worker-thread scan returning ids of matching entries."""
        matches = []
        for row in kv.iter_entries():
            try:
                entry = self._decode(row)
            except CorruptEntry:
                continue
            if predicate(entry):
                matches.append(entry.id)
        return matches

    async def count(self) -> int:
        return await self._run(KVStore.count_entries)

    async def prune_if_needed(self) -> list[str]:
        """
        Delete the oldest entries once the count exceeds max_entries.

        Removes max(1, floor(max_entries * prune_fraction)) entries ordered
        by created_at. Expired entries count toward the ceiling.

        Returns:
            Ids of pruned entries (empty when under the ceiling)
        """
        async with self._prune_lock:
            count = await self.count()
            if count <= self.max_entries:
                return []

            limit = max(1, math.floor(self.max_entries * self.prune_fraction))
            pruned = await self._run(KVStore.delete_oldest, limit)
            logger.info("Pruned %d old cache entries (%d > %d)", len(pruned), count, self.max_entries)
            return pruned

    async def stats(self) -> dict:
        """Count, total_bytes, oldest_created_at, newest_created_at."""
        return await self._run(KVStore.stats)

    # ------------------------------------------------------------------
    # LSH buckets and hyperplanes
    # ------------------------------------------------------------------

    async def load_buckets(self) -> dict[str, list[str]]:
        return await self._run(KVStore.all_buckets)

    async def put_bucket(self, bucket_hash: str, entry_ids: list[str]) -> None:
        await self._run(KVStore.put_bucket, bucket_hash, list(entry_ids))

    async def delete_bucket(self, bucket_hash: str) -> None:
        await self._run(KVStore.delete_bucket, bucket_hash)

    async def load_planes(self) -> Optional[np.ndarray]:
        """Load the persisted hyperplane matrix, or None if never saved."""
        raw = await self._run(KVStore.get_meta, PLANES_META_KEY)
        if raw is None:
            return None
        try:
            doc = json.loads(bytes(raw).decode("utf-8"))
            planes = np.asarray(doc["planes"], dtype=np.float64)
        except (UnicodeDecodeError, ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable LSH hyperplanes in %s", self.db_path)
            return None
        if planes.ndim != 2 or planes.size == 0:
            return None
        return planes

    async def save_planes(self, planes: np.ndarray) -> None:
        raw = json.dumps({"planes": np.asarray(planes).tolist()}).encode("utf-8")
        await self._run(KVStore.set_meta, PLANES_META_KEY, raw)

    async def clear(self) -> None:
        """Delete every entry, bucket and the hyperplanes."""
        for table in ("entries", "buckets", "meta"):
            await self._run(KVStore.purge_table, table)

    async def clear_index(self) -> None:
        """Delete the persisted buckets and hyperplanes, keeping entries."""
        for table in ("buckets", "meta"):
            await self._run(KVStore.purge_table, table)

    async def vacuum(self) -> None:
        """Reclaim disk space after bulk deletes."""
        await self._run(KVStore.vacuum)
