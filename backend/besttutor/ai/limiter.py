"""Outbound rate limiting and concurrency gating for AI calls.

A ``RateLimiter`` composes two independent constraints:

1. at most ``max_concurrent`` calls in flight (FIFO queueing on an
   ``asyncio.Semaphore``), and
2. at most ``max_per_window`` calls per fixed window, counted in a
   ``PointsStore`` keyed ``"<name>:api-calls"``.

A slot is acquired first, then a point is consumed. When no point is left
the call fails fast with ``RateLimitExceeded``; callers decide whether to
retry.

``RequestThrottle`` applies the same fixed-window counting to inbound HTTP
requests per identifier (user id or client address).
"""

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

import redis.asyncio as redis

from besttutor.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimitExceeded(Exception):
    """No points left in the current window."""

    def __init__(self, key: str, limit: int, retry_after: float, reset_time: float | None = None) -> None:
        self.key = key
        self.limit = limit
        self.retry_after = retry_after
        self.reset_time = reset_time
        super().__init__(f"Rate limit exceeded for {key}, retry after {retry_after:.1f}s")

    @property
    def retry_after_seconds(self) -> int:
        return max(1, math.ceil(self.retry_after))


@dataclass
class ConsumeResult:
    allowed: bool
    consumed: int
    remaining: int
    reset_time: float  # epoch seconds


@dataclass
class LimiterStatus:
    active_count: int
    pending_count: int
    remaining_points: int
    reset_time: float | None


class PointsStore(Protocol):
    async def consume(self, key: str, points: int, window_seconds: int) -> ConsumeResult: ...

    async def peek(self, key: str, points: int, window_seconds: int) -> ConsumeResult: ...

    async def reset(self, key: str) -> None: ...


class MemoryPointsStore:
    """Fixed-window counters held in process memory."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._windows: dict[str, tuple[int, float]] = {}

    def _current(self, key: str, window_seconds: int) -> tuple[int, float]:
        now = self._clock()
        consumed, reset_at = self._windows.get(key, (0, 0.0))
        if now >= reset_at:
            consumed, reset_at = 0, now + window_seconds
        return consumed, reset_at

    async def consume(self, key: str, points: int, window_seconds: int) -> ConsumeResult:
        consumed, reset_at = self._current(key, window_seconds)
        consumed += 1
        self._windows[key] = (consumed, reset_at)
        return ConsumeResult(
            allowed=consumed <= points,
            consumed=consumed,
            remaining=max(0, points - consumed),
            reset_time=reset_at,
        )

    async def peek(self, key: str, points: int, window_seconds: int) -> ConsumeResult:
        consumed, reset_at = self._current(key, window_seconds)
        return ConsumeResult(
            allowed=consumed < points,
            consumed=consumed,
            remaining=max(0, points - consumed),
            reset_time=reset_at,
        )

    async def reset(self, key: str) -> None:
        self._windows.pop(key, None)


class RedisPointsStore:
    """Fixed-window counters in Redis, shared by every instance of the app."""

    def __init__(self, client: "redis.Redis", namespace: str = "ratelimit:") -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}{key}"

    async def consume(self, key: str, points: int, window_seconds: int) -> ConsumeResult:
        redis_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incrby(redis_key, 1)
            pipe.pexpire(redis_key, window_seconds * 1000, nx=True)
            pipe.pttl(redis_key)
            consumed, _, ttl_ms = await pipe.execute()

        consumed = int(consumed)
        ttl_ms = ttl_ms if ttl_ms and ttl_ms > 0 else window_seconds * 1000
        return ConsumeResult(
            allowed=consumed <= points,
            consumed=consumed,
            remaining=max(0, points - consumed),
            reset_time=time.time() + ttl_ms / 1000,
        )

    async def peek(self, key: str, points: int, window_seconds: int) -> ConsumeResult:
        redis_key = self._key(key)
        raw = await self._client.get(redis_key)
        ttl_ms = await self._client.pttl(redis_key)
        consumed = int(raw or 0)
        ttl_ms = ttl_ms if ttl_ms and ttl_ms > 0 else window_seconds * 1000
        return ConsumeResult(
            allowed=consumed < points,
            consumed=consumed,
            remaining=max(0, points - consumed),
            reset_time=time.time() + ttl_ms / 1000,
        )

    async def reset(self, key: str) -> None:
        await self._client.delete(self._key(key))


class RateLimiter:
    """Per-service concurrency gate plus fixed-window call budget."""

    def __init__(
        self,
        name: str,
        max_concurrent: int = 10,
        max_per_window: int = 60,
        window_seconds: int = 60,
        store: PointsStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_concurrent < 1 or max_per_window < 1 or window_seconds < 1:
            raise ValueError("limiter bounds must be positive")
        self.name = name
        self.max_concurrent = max_concurrent
        self.max_per_window = max_per_window
        self.window_seconds = window_seconds
        self._store = store or MemoryPointsStore(clock=clock)
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._pending = 0

    @property
    def key(self) -> str:
        return f"{self.name}:api-calls"

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once a slot is free and a point is available.

        Raises ``RateLimitExceeded`` without calling ``fn`` when the window is
        exhausted. The slot is always released.
        """
        self._pending += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._pending -= 1

        self._active += 1
        try:
            result = await self._store.consume(self.key, self.max_per_window, self.window_seconds)
            if not result.allowed:
                retry_after = max(0.0, result.reset_time - self._clock())
                logger.warning(
                    "Rate limit exceeded for %s (%d/%d), retry in %.1fs",
                    self.key,
                    result.consumed,
                    self.max_per_window,
                    retry_after,
                )
                raise RateLimitExceeded(self.key, self.max_per_window, retry_after, result.reset_time)
            return await fn()
        finally:
            self._active -= 1
            self._semaphore.release()

    async def get_status(self) -> LimiterStatus:
        """Snapshot for observability. Never raises."""
        try:
            result = await self._store.peek(self.key, self.max_per_window, self.window_seconds)
        except Exception:
            logger.warning("Could not read limiter state for %s", self.key, exc_info=True)
            return LimiterStatus(
                active_count=self._active,
                pending_count=self._pending,
                remaining_points=0,
                reset_time=None,
            )
        return LimiterStatus(
            active_count=self._active,
            pending_count=self._pending,
            remaining_points=result.remaining,
            reset_time=result.reset_time,
        )

    async def reset(self) -> None:
        await self._store.reset(self.key)


def build_rate_limiters(settings: Settings, store: PointsStore | None = None) -> dict[str, RateLimiter]:
    """One limiter per outbound service profile, sharing the points store."""
    store = store or MemoryPointsStore()
    limiters = {
        name: RateLimiter(name, max_concurrent=concurrent, max_per_window=per_minute, store=store)
        for name, (concurrent, per_minute) in settings.ai_limiter_profiles.items()
    }
    logger.info("Configured AI rate limiters: %s", ", ".join(sorted(limiters)))
    return limiters


class RequestThrottle:
    """Per-identifier inbound request limit.

    Fails open: if the points store errors, the request is allowed and the
    failure is logged.
    """

    def __init__(self, prefix: str, points: int, window_seconds: int, store: PointsStore | None = None) -> None:
        self.prefix = prefix
        self.points = points
        self.window_seconds = window_seconds
        self._store = store or MemoryPointsStore()

    async def hit(self, identifier: str) -> ConsumeResult:
        key = f"{self.prefix}:{identifier}"
        try:
            return await self._store.consume(key, self.points, self.window_seconds)
        except Exception:
            logger.warning("Request throttle store failed for %s, allowing request", key, exc_info=True)
            return ConsumeResult(
                allowed=True,
                consumed=0,
                remaining=self.points,
                reset_time=time.time() + self.window_seconds,
            )

    async def check(self, identifier: str) -> ConsumeResult:
        """Consume one point or raise ``RateLimitExceeded``."""
        result = await self.hit(identifier)
        if not result.allowed:
            retry_after = max(0.0, result.reset_time - time.time())
            raise RateLimitExceeded(f"{self.prefix}:{identifier}", self.points, retry_after, result.reset_time)
        return result


def build_request_throttles(settings: Settings, store: PointsStore | None = None) -> dict[str, RequestThrottle]:
    store = store or MemoryPointsStore()
    return {
        name: RequestThrottle(name, points, window, store=store)
        for name, (points, window) in settings.request_throttles.items()
    }
