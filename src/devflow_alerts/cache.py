"""Bounded least-recently-used cache."""

from collections import OrderedDict
from typing import Any, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


class LRUCache(Generic[V]):
    """In-memory LRU cache with hit/miss accounting."""

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError(f"Cache size must be positive: {max_size}")
        self.max_size = max_size
        self._entries: "OrderedDict[str, V]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[V]:
        if key not in self._entries:
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return self._entries[key]

    def set(self, key: str, value: V) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = value
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        lookups = self._hits + self._misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }
