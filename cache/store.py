"""
cache/store.py -- Key/value fast cache with per-entry TTL.

Two interchangeable backends behind the same five methods
(get / set / delete / ping / close):

  RedisCache  -- redis-py client, SET key value EX ttl. Used in production so
                 every worker process sees the same entries.
  MemoryCache -- in-process dict guarded by a lock, entries evicted on read
                 once their deadline passes. Used in debug mode and tests.

Values are plain strings; callers own serialization. Backend failures are
raised as CacheError so callers can degrade without knowing which backend is
configured.

Usage:
    cache = create_cache(get_settings())
    cache.set("session:abc", payload, ttl_seconds=3600)
    cache.get("session:abc")    # returns str or None
    cache.delete("session:abc")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import TYPE_CHECKING, Optional

from redis import Redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.cache")


class CacheError(Exception):
    """The fast cache could not complete an operation."""


class RedisCache:
    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds (clamped to at least 1 second)."""
        try:
            self.client.set(key, value, ex=max(1, int(ttl_seconds)))
        except RedisError as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            raise CacheError(f"DEL {key} failed: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self.client.close()


@dataclass(slots=True)
class _Entry:
    value: str
    expires_at: float


class MemoryCache:
    """Thread-safe in-process TTL cache.

    clock must be monotonic; tests pass a fake to move time forward.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = Lock()
        self._store: dict[str, _Entry] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                logger.debug("cache: evict expired key=%s", key)
                del self._store[key]
                return None
            return entry.value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = self._clock() + max(1, int(ttl_seconds))
        with self._lock:
            self._store[key] = _Entry(value=value, expires_at=expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._store.clear()


def create_cache(settings: Settings) -> RedisCache | MemoryCache:
    """Build the backend selected by CACHE_BACKEND."""
    if settings.cache_backend == "memory":
        logger.info("Using in-process memory cache")
        return MemoryCache()
    logger.info("Using Redis cache at %s:%d/%d", settings.redis_host, settings.redis_port, settings.redis_db)
    return RedisCache(settings.redis_url, socket_timeout=settings.cache_socket_timeout)
