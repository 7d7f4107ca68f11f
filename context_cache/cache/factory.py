"""
Construction of the application's cache instances.

Both caches run the same engine; only settings and payload type differ.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from context_cache.config.settings import general_cache_settings, memory_search_cache_settings
from context_cache.persist.paths import CachePaths, ensure_dirs

from .engine import CacheEngine
from .schemas import ContextPayload


@dataclass
class CacheEngines:
    """The application's two caches, owned by whoever built them."""

    general: CacheEngine
    memory_search: CacheEngine

    async def init(self) -> None:
        await self.general.init()
        await self.memory_search.init()

    async def close(self) -> None:
        await self.general.close()
        await self.memory_search.close()

    async def __aenter__(self) -> "CacheEngines":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def build_engines(cache_dir: Path, memory_payload_type: Any = Any) -> CacheEngines:
    """
    Build (but do not open) the general and memory-search caches.

    Args:
        cache_dir: Directory for the SQLite files
        memory_payload_type: Payload type of memory-search results

    Returns:
        CacheEngines; await init() before use
    """
    paths = CachePaths(cache_dir=Path(cache_dir))
    ensure_dirs(paths)

    return CacheEngines(
        general=CacheEngine(
            general_cache_settings(paths.general_db_path),
            payload_type=ContextPayload,
        ),
        memory_search=CacheEngine(
            memory_search_cache_settings(paths.memory_search_db_path),
            payload_type=memory_payload_type,
        ),
    )
