"""Capacity- and age-bounded in-process cache.

Eviction is least-recently-used (``get`` refreshes recency), expiry is
measured from the last ``set`` of a key. An entry is served while
``now - inserted_at <= ttl`` and purged on the first read past that.
"""

import time
from typing import Any, Callable, Hashable, Iterator, List, NamedTuple

import cachetools


class _Entry(NamedTuple):
    value: Any
    inserted_at: float


class BoundedTTLCache:
    """LRU cache with a per-entry time-to-live.

    Args:
        max_size: Maximum number of entries kept
        ttl: Entry lifetime in seconds, counted from insertion
        timer: Clock returning seconds; defaults to ``time.monotonic``
    """

    def __init__(self, max_size: int, ttl: float, timer: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self.ttl = ttl
        self.timer = timer
        self._data: cachetools.LRUCache = cachetools.LRUCache(maxsize=max(1, max_size))

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the cached value, or ``default`` when absent or expired."""
        try:
            entry = self._data[key]  # refreshes LRU position
        except KeyError:
            return default
        if self.timer() - entry.inserted_at > self.ttl:
            self._data.pop(key, None)
            return default
        return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        # LRUCache evicts the least recently used key when a new key
        # would exceed maxsize; overwrites never evict.
        self._data[key] = _Entry(value, self.timer())

    def has(self, key: Hashable) -> bool:
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def delete(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def size(self) -> int:
        """Number of stored entries, expired-but-unread ones included."""
        return len(self._data)

    def keys(self) -> List[Hashable]:
        return list(self._data.keys())

    def delete_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Delete every key matching ``predicate``; returns how many went."""
        doomed = [key for key in self._data.keys() if predicate(key)]
        for key in doomed:
            self._data.pop(key, None)
        return len(doomed)

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return self.size()

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self.keys())

    def __repr__(self) -> str:
        return f"BoundedTTLCache(size={self.size()}, max_size={self.max_size}, ttl={self.ttl})"
