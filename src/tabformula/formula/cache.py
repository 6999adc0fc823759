"""Thread-safe LRU cache used to memoise parse results."""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tabformula.core.logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class CacheInfo:
    """Cache statistics snapshot."""

    hits: int
    misses: int
    evictions: int
    size: int
    capacity: int


class LRUCache(Generic[K, V]):
    """
    Bounded mapping that evicts the least recently used entry.

    Every operation holds an internal lock, so one instance can be shared
    between threads.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity < 1:
            raise ValueError(f"LRU cache capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._data: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: K, default: Any = None) -> V | Any:
        """Look up a key, marking it most recently used."""
        with self._lock:
            try:
                value = self._data[key]
            except KeyError:
                self._misses += 1
                return default
            self._data.move_to_end(key)
            self._hits += 1
            return value

    def put(self, key: K, value: V) -> None:
        """Insert or replace a key, evicting the oldest entry when full."""
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = value
            if len(self._data) > self.capacity:
                evicted, _ = self._data.popitem(last=False)
                self._evictions += 1
                logger.debug("Evicted cache entry %r", evicted)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._hits = self._misses = self._evictions = 0

    def info(self) -> CacheInfo:
        with self._lock:
            return CacheInfo(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._data),
                capacity=self.capacity,
            )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
