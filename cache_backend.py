"""Unified caching interface with Redis / in-memory swap.

Provides a simple get/set/delete/clear API. When REDIS_URL is configured
and reachable, uses Redis; otherwise falls back to an in-process TTLCache.
Only derived data (leaderboards) is cached: the ledger never reads from here.

Usage:
    from cache_backend import init_cache, get_cache
    init_cache(app)          # called once in create_app()
    cache = get_cache()      # module-level accessor
    cache.set("key", value, ttl=30)
    value = cache.get("key")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

logger = logging.getLogger(__name__)

# ── Protocol ───────────────────────────────────────────────

class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...
    def set(self, key: str, value: Any, ttl: int = 300) -> None: ...
    def delete(self, key: str) -> None: ...
    def clear(self) -> None: ...
    def cleanup(self) -> int: ...


# ── TTL Cache ──────────────────────────────────────────────

class TTLCache:
    """In-memory dict with expiry timestamps, evicting the soonest-expiring
    entry once MAX_ENTRIES is reached."""

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int = 300) -> None:
        with self._lock:
            if key not in self._store and len(self._store) >= self.MAX_ENTRIES:
                self._evict_oldest()
            self._store[key] = (value, time.time() + ttl_seconds)

    def pop(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def _evict_oldest(self) -> None:
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k][1])
        del self._store[oldest_key]

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, (_, exp) in self._store.items() if now > exp]
            for k in expired:
                del self._store[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


# ── In-Memory Implementation ──────────────────────────────

class InMemoryCache:
    """JSON-encoding wrapper around TTLCache."""

    def __init__(self) -> None:
        self._store = TTLCache()

    def get(self, key: str) -> Any | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return raw

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        raw = json.dumps(value) if not isinstance(value, str) else value
        self._store.set(key, raw, ttl)

    def delete(self, key: str) -> None:
        self._store.pop(key)

    def clear(self) -> None:
        self._store.clear()

    def cleanup(self) -> int:
        return self._store.cleanup()


# ── Redis Implementation ──────────────────────────────────

class RedisCache:
    """Wraps redis.Redis; errors degrade to cache misses."""

    def __init__(self, redis_client, prefix: str = "dojo:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return self._prefix + key

    def get(self, key: str) -> Any | None:
        try:
            raw = self._redis.get(self._key(key))
        except redis.RedisError as e:
            logger.warning("Redis GET error (key=%s): %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return raw.decode() if isinstance(raw, bytes) else raw

    def set(self, key: str, value: Any, ttl: int = 300) -> None:
        try:
            raw = json.dumps(value) if not isinstance(value, str) else value
            self._redis.setex(self._key(key), ttl, raw)
        except redis.RedisError as e:
            logger.warning("Redis SET error (key=%s): %s", key, e)

    def delete(self, key: str) -> None:
        try:
            self._redis.delete(self._key(key))
        except redis.RedisError as e:
            logger.warning("Redis DELETE error (key=%s): %s", key, e)

    def clear(self) -> None:
        try:
            keys = list(self._redis.scan_iter(match=self._prefix + "*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Redis CLEAR error: %s", e)

    def cleanup(self) -> int:
        # Redis handles expiry natively
        return 0


# ── Module-level singleton ────────────────────────────────

_cache: CacheBackend | None = None


def init_cache(app) -> None:
    """Initialize the cache backend. Call once from create_app()."""
    global _cache

    redis_url = app.config.get("REDIS_URL", "")
    if redis_url:
        try:
            client = redis.Redis.from_url(redis_url, decode_responses=False)
            client.ping()
            _cache = RedisCache(client)
            app.logger.info("Cache backend: Redis (%s)", redis_url)
            return
        except redis.RedisError as e:
            app.logger.warning("Redis connection failed (%s): falling back to in-memory cache.", e)

    _cache = InMemoryCache()
    app.logger.info("Cache backend: in-memory (TTLCache)")


def get_cache() -> CacheBackend:
    """Return the active cache backend. Lazily initializes if needed."""
    global _cache
    if _cache is None:
        _cache = InMemoryCache()
    return _cache
