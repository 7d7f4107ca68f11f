"""
Tier 1: bounded in-process LRU cache.

OrderedDict keeps recency order: the first item is the least recently used.
Every mutation, including the reordering done by get(), happens under one
lock, so concurrent callers cannot corrupt the order.
"""

import threading
from collections import OrderedDict
from typing import Callable, Generic, Iterator, Optional, TypeVar

V = TypeVar("V")


class InMemoryLRU(Generic[V]):
    """
    Fixed-capacity LRU map with O(1) get/set.

    Example:
        >>> lru = InMemoryLRU(capacity=2)
        >>> lru.set("a", 1); lru.set("b", 2)
        >>> lru.get("a")
        1
        >>> lru.set("c", 3)   # evicts "b", the least recently used
        >>> lru.has("b")
        False
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: OrderedDict[str, V] = OrderedDict()
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[V]:
        """Return the value for key and mark it most recently used."""
        with self._lock:
            value = self._items.get(key)
            if value is not None:
                self._items.move_to_end(key)
            return value

    def peek(self, key: str) -> Optional[V]:
        """Return the value for key without touching recency."""
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, value: V) -> None:
        """Insert or replace; evicts the least recently used key when full."""
        with self._lock:
            if key in self._items:
                self._items.move_to_end(key)
            elif len(self._items) >= self.capacity:
                self._items.popitem(last=False)
            self._items[key] = value

    def has(self, key: str) -> bool:
        """Presence check. Does not promote."""
        with self._lock:
            return key in self._items

    def discard(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def discard_where(self, predicate: Callable[[V], bool]) -> list[str]:
        """Remove every key whose value matches. Returns the removed keys."""
        with self._lock:
            doomed = [key for key, value in self._items.items() if predicate(value)]
            for key in doomed:
                del self._items[key]
            return doomed

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def keys(self) -> list[str]:
        """Snapshot of keys, least recently used first."""
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
