import pickle
from unittest.mock import MagicMock

import pytest
import redis

from sqlmapper import ConfigurationError
from sqlmapper.cache import MemoryCacheStore, create_cache_store
from sqlmapper.cache.redis import RedisCacheStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestMemoryCacheStore:
    """Test the in-memory LRU store."""

    def test_get_miss_then_hit(self):
        store = MemoryCacheStore()
        assert store.get("k") == (False, None)

        store.set("k", [1, 2])
        assert store.get("k") == (True, [1, 2])

        stats = store.stats()
        assert stats.hits == 1
        assert stats.misses == 1
        assert stats.backend_type == "memory"

    def test_none_value_is_a_hit(self):
        store = MemoryCacheStore()
        store.set("k", None)
        assert store.get("k") == (True, None)

    def test_ttl_expiry(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock=clock)
        store.set("k", "v", ttl=10)

        clock.now = 5
        assert store.get("k") == (True, "v")

        clock.now = 11
        assert store.get("k") == (False, None)
        assert len(store) == 0

    def test_default_ttl(self):
        clock = FakeClock()
        store = MemoryCacheStore(default_ttl=1, clock=clock)
        store.set("k", "v")
        clock.now = 2
        assert store.get("k")[0] is False

    def test_lru_eviction(self):
        store = MemoryCacheStore(max_size=2)
        store.set("a", 1)
        store.set("b", 2)
        store.get("a")
        store.set("c", 3)

        assert store.get("b")[0] is False
        assert store.get("a") == (True, 1)
        assert store.get("c") == (True, 3)

    def test_clear_by_prefix(self):
        store = MemoryCacheStore()
        store.set("Users:query:1", 1)
        store.set("Users:query:2", 2)
        store.set("Orders:query:1", 3)

        assert store.clear("Users:") == 2
        assert len(store) == 1
        assert store.clear() == 1

    def test_values_are_copied(self):
        store = MemoryCacheStore()
        rows = [{"name": "alice"}]
        store.set("k", rows)
        rows.append({"name": "mallory"})

        _, cached = store.get("k")
        cached[0]["name"] = "changed"

        assert store.get("k") == (True, [{"name": "alice"}])

    def test_delete(self):
        store = MemoryCacheStore()
        store.set("k", 1)
        assert store.delete("k") is True
        assert store.delete("k") is False


class TestRedisCacheStore:
    """Test the Redis store against a mocked client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def store(self, client):
        return RedisCacheStore("redis://:secret@localhost:6379/0", client=client)

    def test_get_miss(self, store, client):
        client.get.return_value = None
        assert store.get("k") == (False, None)
        client.get.assert_called_once_with("sqlmapper:k")

    def test_get_hit_unpickles(self, store, client):
        client.get.return_value = pickle.dumps({"a": 1})
        assert store.get("k") == (True, {"a": 1})

    def test_set_uses_default_ttl(self, store, client):
        store.set("k", [1])
        client.set.assert_called_once_with("sqlmapper:k", pickle.dumps([1]), ex=3600)

    def test_set_explicit_ttl(self, store, client):
        store.set("k", [1], ttl=5)
        assert client.set.call_args.kwargs["ex"] == 5

    def test_clear_by_prefix_scans(self, store, client):
        client.scan_iter.return_value = [b"sqlmapper:Users:a", b"sqlmapper:Users:b"]
        client.delete.return_value = 1

        assert store.clear("Users:") == 2
        client.scan_iter.assert_called_once_with(match="sqlmapper:Users:*", count=100)

    def test_clear_escapes_glob_characters(self, store, client):
        client.scan_iter.return_value = []
        store.clear("a*b:")
        assert client.scan_iter.call_args.kwargs["match"] == "sqlmapper:a\\*b:*"

    def test_sanitize_url(self):
        assert RedisCacheStore._sanitize_url("redis://:secret@host:6379/0") == "redis://:***@host:6379/0"

    def test_stats(self, store, client):
        client.info.return_value = {"db0": {"keys": 7}}
        stats = store.stats()
        assert stats.size == 7
        assert stats.backend_type == "redis"
        assert "secret" not in stats.connection_info

    def test_close(self, store, client):
        store.close()
        client.close.assert_called_once()


class TestCreateCacheStore:
    """Test cache store selection from a URL."""

    def test_memory_by_default(self):
        store = create_cache_store(None, max_size=5)
        assert isinstance(store, MemoryCacheStore)
        assert store.stats().max_size == 5

    def test_redis_url(self, monkeypatch):
        created = MagicMock()
        monkeypatch.setattr(redis.Redis, "from_url", created)

        store = create_cache_store("redis://localhost:6379/1")

        assert isinstance(store, RedisCacheStore)
        created.assert_called_once()

    def test_unsupported_url(self):
        with pytest.raises(ConfigurationError):
            create_cache_store("memcached://localhost")
