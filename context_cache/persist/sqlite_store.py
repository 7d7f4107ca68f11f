"""
SQLite-backed store for the persistent cache tier.

Uses SQLite with three tables:
- entries: entry id → JSON record + float32 embedding, indexed by created_at and scope_id
- buckets: LSH bucket hash → JSON list of entry ids
- meta: small named blobs (the LSH hyperplane matrix)

All calls are synchronous; the async tier wraps them in worker threads.
"""

import json
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, Optional

EntryRow = tuple[str, str, float, bytes, Optional[bytes]]


class KVStore:
    """
    File-backed SQLite store for cache entries and LSH buckets.

    Thread-safe: one connection guarded by a lock, WAL journal mode.
    """

    def __init__(self, db_path: Path):
        """
        Initialize store at given path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,  # Accessed from asyncio worker threads
            timeout=10.0,
        )

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables and secondary indexes if they don't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                id TEXT PRIMARY KEY,
                scope_id TEXT NOT NULL,
                created_at REAL NOT NULL,
                value BLOB NOT NULL,
                embedding BLOB
            )
        """)
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_created_at ON entries(created_at)")
        self._conn.execute("CREATE INDEX IF NOT EXISTS idx_entries_scope_id ON entries(scope_id)")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS buckets (
                hash TEXT PRIMARY KEY,
                entries TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value BLOB NOT NULL
            )
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def put_entry(self, row: EntryRow) -> None:
        """
        Insert or replace an entry row.

        Args:
            row: (id, scope_id, created_at, value, embedding)
        """
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO entries (id, scope_id, created_at, value, embedding) "
                "VALUES (?, ?, ?, ?, ?)",
                row,
            )
            self._conn.commit()

    def get_entry(self, entry_id: str) -> Optional[EntryRow]:
        """Return the row for an entry id, or None."""
        with self._lock:
            cursor = self._conn.execute(
                "SELECT id, scope_id, created_at, value, embedding FROM entries WHERE id = ?",
                (entry_id,),
            )
            return cursor.fetchone()

    def delete_entry(self, entry_id: str) -> bool:
        """Delete one entry. Returns True if a row was removed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
            self._conn.commit()
            return cursor.rowcount > 0

    def delete_scope(self, scope_id: str) -> list[str]:
        """
        Delete every entry in a scope using the scope_id index.

        Returns:
            Ids of deleted entries
        """
        with self._lock:
            ids = [
                row[0]
                for row in self._conn.execute("SELECT id FROM entries WHERE scope_id = ?", (scope_id,))
            ]
            self._conn.execute("DELETE FROM entries WHERE scope_id = ?", (scope_id,))
            self._conn.commit()
            return ids

    def iter_entries(self, batch_size: int = 256) -> Iterator[EntryRow]:
        """
        Yield all entry rows ordered by created_at.

        Rows are fetched in batches so that other threads may interleave
        between batches.
        """
        last: tuple[float, str] = (float("-inf"), "")
        while True:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT id, scope_id, created_at, value, embedding FROM entries "
                    "WHERE (created_at, id) > (?, ?) ORDER BY created_at, id LIMIT ?",
                    (last[0], last[1], batch_size),
                ).fetchall()
            if not rows:
                return
            yield from rows
            last = (rows[-1][2], rows[-1][0])

    def count_entries(self) -> int:
        """Number of stored entries."""
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    def delete_oldest(self, limit: int) -> list[str]:
        """
        Delete the `limit` oldest entries by created_at.

        Returns:
            Ids of deleted entries
        """
        with self._lock:
            ids = [
                row[0]
                for row in self._conn.execute(
                    "SELECT id FROM entries ORDER BY created_at ASC LIMIT ?", (limit,)
                )
            ]
            self._conn.executemany("DELETE FROM entries WHERE id = ?", [(i,) for i in ids])
            self._conn.commit()
            return ids

    # ------------------------------------------------------------------
    # LSH buckets
    # ------------------------------------------------------------------

    def put_bucket(self, bucket_hash: str, entry_ids: list[str]) -> None:
        """Insert or replace an LSH bucket."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO buckets (hash, entries) VALUES (?, ?)",
                (bucket_hash, json.dumps(entry_ids)),
            )
            self._conn.commit()

    def delete_bucket(self, bucket_hash: str) -> None:
        """Remove an LSH bucket."""
        with self._lock:
            self._conn.execute("DELETE FROM buckets WHERE hash = ?", (bucket_hash,))
            self._conn.commit()

    def all_buckets(self) -> dict[str, list[str]]:
        """Load every bucket. Buckets with unreadable id lists are skipped."""
        with self._lock:
            rows = self._conn.execute("SELECT hash, entries FROM buckets").fetchall()

        buckets = {}
        for bucket_hash, raw in rows:
            try:
                ids = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(ids, list):
                buckets[bucket_hash] = [str(i) for i in ids]
        return buckets

    # ------------------------------------------------------------------
    # Meta
    # ------------------------------------------------------------------

    def set_meta(self, key: str, value: bytes) -> None:
        """Set a named blob."""
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
            )
            self._conn.commit()

    def get_meta(self, key: str) -> Optional[bytes]:
        """Get a named blob, or None."""
        with self._lock:
            row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_table(self, table: str) -> int:
        """
        Delete all rows from a table.

        Args:
            table: Table name (entries, buckets, meta)

        Returns:
            Number of rows deleted
        """
        if table not in ("entries", "buckets", "meta"):
            raise ValueError(f"Unknown table: {table}")

        with self._lock:
            count = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            self._conn.execute(f"DELETE FROM {table}")
            self._conn.commit()
        return count

    def stats(self) -> dict:
        """
        Get statistics for the entries table.

        Returns:
            Dict with count, total_bytes, oldest_created_at, newest_created_at
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT
                    COUNT(*) as count,
                    SUM(LENGTH(value) + IFNULL(LENGTH(embedding), 0)) as total_bytes,
                    MIN(created_at) as oldest,
                    MAX(created_at) as newest
                FROM entries
            """).fetchone()

        return {
            "count": row[0] or 0,
            "total_bytes": row[1] or 0,
            "oldest_created_at": row[2] or 0.0,
            "newest_created_at": row[3] or 0.0,
        }

    def vacuum(self) -> None:
        """
        Reclaim space and optimize database.

        Should be called periodically after large deletions.
        """
        with self._lock:
            self._conn.execute("VACUUM")
            self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
