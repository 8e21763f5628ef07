"""Response cache for AI calls.

Two interchangeable backends share the same async contract:

* ``InMemoryCache``: a process-local mapping with lazy TTL expiry and
  insertion-order (FIFO) eviction once ``max_size`` is reached.
* ``RedisCache``: a hosted store reached through ``redis.asyncio``, shared
  across instances. Backend failures are logged and degrade to a miss.

``build_cache`` picks one at startup based on configuration alone.
"""

import hashlib
import json
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

import redis.asyncio as redis

from besttutor.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheTTL:
    """Common TTL presets, in seconds."""

    SHORT = 5 * 60
    MEDIUM = 30 * 60
    LONG = 60 * 60
    DAY = 24 * 60 * 60
    WEEK = 7 * 24 * 60 * 60


class CacheAdapter(Protocol):
    backend: str

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int = CacheTTL.LONG) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self) -> None: ...

    async def invalidate_pattern(self, pattern: str) -> int: ...


@dataclass
class _Entry:
    value: Any
    inserted_at: float
    ttl_seconds: int


class InMemoryCache:
    """Process-local cache. Not shared across workers."""

    backend = "memory"

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss: %s", key)
            return None

        if self._clock() - entry.inserted_at > entry.ttl_seconds:
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int = CacheTTL.LONG) -> None:
        # Overwriting keeps the key's original insertion position
        if key not in self._entries and len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted: %s", evicted)

        existing = self._entries.get(key)
        if existing is not None:
            existing.value = value
            existing.inserted_at = self._clock()
            existing.ttl_seconds = ttl_seconds
        else:
            self._entries[key] = _Entry(value=value, inserted_at=self._clock(), ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key containing ``pattern``. Returns the number removed."""
        keys = [k for k in self._entries if pattern in k]
        for key in keys:
            del self._entries[key]
        logger.info("Invalidated %d cache entries matching %r", len(keys), pattern)
        return len(keys)

    def stats(self) -> dict[str, Any]:
        return {"backend": self.backend, "size": len(self._entries), "max_size": self.max_size}

    def __len__(self) -> int:
        return len(self._entries)


class RedisCache:
    """Hosted cache backed by Redis. Values are stored as JSON with SETEX."""

    backend = "redis"

    def __init__(self, client: "redis.Redis", namespace: str = "cache:") -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(self._key(key))
        except Exception:
            logger.warning("Redis cache get failed for %s, treating as miss", key, exc_info=True)
            return None

        if raw is None:
            logger.debug("Cache miss: %s", key)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

        logger.debug("Cache hit: %s", key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int = CacheTTL.LONG) -> None:
        try:
            await self._client.setex(self._key(key), ttl_seconds, json.dumps(value, default=str))
        except Exception:
            logger.warning("Redis cache set failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except Exception:
            logger.warning("Redis cache delete failed for %s", key, exc_info=True)

    async def clear(self) -> None:
        await self.invalidate_pattern("")

    async def invalidate_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            async for raw_key in self._client.scan_iter(match=f"{self._namespace}*{pattern}*"):
                deleted += await self._client.delete(raw_key)
        except Exception:
            logger.warning("Redis cache invalidation failed for %r", pattern, exc_info=True)
        logger.info("Invalidated %d cache entries matching %r", deleted, pattern)
        return deleted

    def stats(self) -> dict[str, Any]:
        return {"backend": self.backend, "namespace": self._namespace}


def create_redis_client(url: str) -> "redis.Redis":
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


def build_cache(settings: Settings, client: "redis.Redis | None" = None) -> CacheAdapter:
    """Select the cache backend once, from configuration.

    A configured ``REDIS_URL`` selects the hosted backend; anything else gets
    the in-process cache. The choice is never revisited at runtime.
    """
    if settings.hosted_cache_configured:
        logger.info("Using Redis response cache")
        return RedisCache(client or create_redis_client(settings.redis_url))

    logger.info("Using in-memory response cache (max_size=%d)", settings.cache_max_size)
    return InMemoryCache(max_size=settings.cache_max_size)


def generate_cache_key(prefix: str, *inputs: Any) -> str:
    """Deterministic key: ``prefix:`` + first 16 hex chars of sha256(JSON(inputs))."""
    payload = json.dumps(list(inputs), sort_keys=True, default=str, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}:{digest}"


async def cached_generate(
    cache: CacheAdapter,
    key: str,
    fn: Callable[[], Awaitable[T]],
    ttl_seconds: int = CacheTTL.LONG,
) -> T:
    """Return the cached value for ``key`` or compute, store and return it."""
    cached = await cache.get(key)
    if cached is not None:
        return cached

    result = await fn()
    await cache.set(key, result, ttl_seconds)
    return result
