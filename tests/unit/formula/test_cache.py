"""Unit tests for LRUCache."""

import threading

import pytest

from tabformula.formula.cache import LRUCache


class TestLRUCache:
    """Tests for LRUCache class."""

    def test_get_and_put(self):
        """Test basic storage."""
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        assert cache.get("a") == 1
        assert cache.get("missing") is None
        assert cache.get("missing", default=0) == 0
        assert "a" in cache
        assert len(cache) == 1

    def test_evicts_least_recently_used(self):
        """Test the least recently used entry goes first."""
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert "a" in cache
        assert "b" not in cache
        assert "c" in cache

    def test_put_existing_refreshes(self):
        """Test overwriting a key marks it recently used."""
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 10)
        cache.put("c", 3)
        assert cache.get("a") == 10
        assert "b" not in cache

    def test_clear(self):
        """Test clearing entries and statistics."""
        cache = LRUCache(capacity=2)
        cache.put("a", 1)
        cache.get("a")
        cache.clear()
        info = cache.info()
        assert info.size == 0
        assert info.hits == 0

    def test_invalid_capacity(self):
        """Test capacity must be positive."""
        with pytest.raises(ValueError):
            LRUCache(capacity=0)

    def test_concurrent_access(self):
        """Test the cache stays bounded under concurrent writers."""
        cache = LRUCache(capacity=50)

        def writer(offset: int) -> None:
            for i in range(200):
                cache.put(offset * 1000 + i, i)
                cache.get(offset * 1000 + i // 2)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        info = cache.info()
        assert info.size == 50
        assert info.hits + info.misses == 8 * 200
