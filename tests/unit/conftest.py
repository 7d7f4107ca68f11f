"""
Shared fixtures for cache unit tests.
"""
import numpy as np
import pytest
import pytest_asyncio

from context_cache.cache.engine import CacheEngine
from context_cache.cache.entry_store import EntryStore
from context_cache.config.settings import CacheSettings
from context_cache.persist.sqlite_store import KVStore

DIM = 32


class FakeClock:
    """Controllable unix-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def kv(tmp_path):
    """Create a temporary KVStore instance."""
    store = KVStore(tmp_path / "cache.db")
    yield store
    store.close()


@pytest_asyncio.fixture
async def entry_store(tmp_path):
    """Open EntryStore with a small pruning ceiling."""
    store = EntryStore(tmp_path / "entries.db", max_entries=10, prune_fraction=0.1)
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Small, seeded settings backed by a temp database."""
    return CacheSettings(
        name="test",
        memory_capacity=8,
        persistent_capacity=50,
        similarity_threshold=0.88,
        lsh_planes=10,
        lsh_seed=7,
        db_path=tmp_path / "engine.db",
    )


@pytest_asyncio.fixture
async def engine(settings, clock):
    """Initialized CacheEngine on a fake clock."""
    eng = CacheEngine(settings, clock=clock)
    await eng.init()
    yield eng
    await eng.close()


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def embedding(rng):
    """A unit-length query embedding."""
    vec = rng.normal(size=DIM)
    return (vec / np.linalg.norm(vec)).tolist()


@pytest.fixture
def orthogonal(rng):
    """Factory: a unit vector orthogonal to vec (cosine similarity 0)."""
    def make(vec):
        base = np.asarray(vec, dtype=np.float64)
        other = rng.normal(size=base.size)
        other -= other.dot(base) / base.dot(base) * base
        return (other / np.linalg.norm(other)).tolist()
    return make
