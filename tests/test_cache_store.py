"""
tests/test_cache_store.py -- Unit tests for the fast cache backends.

MemoryCache is exercised directly with a fake monotonic clock. RedisCache is
tested against a mocked redis client so no server is needed: the point is
that backend failures surface as CacheError and ping() never raises.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cache.store import CacheError, MemoryCache, RedisCache, create_cache
from core.config import Settings


class TestMemoryCache:
    def test_set_get_delete(self, cache) -> None:
        cache.set("k", "v", 60)
        assert cache.get("k") == "v"
        cache.delete("k")
        cache.delete("k")
        assert cache.get("k") is None

    def test_entry_expires_at_deadline(self, cache, clock) -> None:
        cache.set("k", "v", 10)
        clock.advance(9.9)
        assert cache.get("k") == "v"
        clock.advance(0.1)
        assert cache.get("k") is None

    def test_ttl_clamped_to_one_second(self, cache, clock) -> None:
        cache.set("k", "v", 0)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_overwrite_resets_ttl(self, cache, clock) -> None:
        cache.set("k", "old", 10)
        clock.advance(5)
        cache.set("k", "new", 10)
        clock.advance(6)
        assert cache.get("k") == "new"

    def test_close_clears(self, cache) -> None:
        cache.set("k", "v", 60)
        cache.close()
        assert cache.get("k") is None
        assert cache.ping() is True


class TestRedisCache:
    @pytest.fixture
    def redis_cache(self) -> RedisCache:
        rc = RedisCache("redis://localhost:6379/0")
        rc.client = MagicMock()
        return rc

    def test_set_uses_expiry(self, redis_cache) -> None:
        redis_cache.set("k", "v", 30)
        redis_cache.client.set.assert_called_once_with("k", "v", ex=30)

    def test_set_clamps_ttl(self, redis_cache) -> None:
        redis_cache.set("k", "v", 0)
        redis_cache.client.set.assert_called_once_with("k", "v", ex=1)

    @pytest.mark.parametrize("method, args", [("get", ("k",)), ("set", ("k", "v", 5)), ("delete", ("k",))])
    def test_backend_errors_become_cache_errors(self, redis_cache, method, args) -> None:
        getattr(redis_cache.client, method).side_effect = RedisConnectionError("down")
        with pytest.raises(CacheError):
            getattr(redis_cache, method)(*args)

    def test_ping_never_raises(self, redis_cache) -> None:
        redis_cache.client.ping.side_effect = RedisConnectionError("down")
        assert redis_cache.ping() is False


def test_create_cache_selects_backend() -> None:
    assert isinstance(create_cache(Settings(cache_backend="memory", debug=True)), MemoryCache)
    assert isinstance(create_cache(Settings(cache_backend="redis")), RedisCache)
