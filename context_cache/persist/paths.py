"""
Path management for cache databases.

One SQLite file per engine instance, all under a shared cache directory.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class CachePaths:
    """Centralized paths for the cache databases."""

    cache_dir: Path            # e.g., data/cache

    @property
    def general_db_path(self) -> Path:
        """SQLite file of the general retrieval-context cache."""
        return self.cache_dir / "general.db"

    @property
    def memory_search_db_path(self) -> Path:
        """SQLite file of the memory-search cache."""
        return self.cache_dir / "memory_search.db"


def ensure_dirs(cp: CachePaths) -> None:
    """
    Create the cache directory if it doesn't exist.

    Args:
        cp: CachePaths instance
    """
    cp.cache_dir.mkdir(parents=True, exist_ok=True)
