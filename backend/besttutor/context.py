"""Application context: the process-wide AI services, built once at startup.

The cache, limiters, request throttles and the language model are created in
the FastAPI lifespan, stored on ``app.state.context`` and handed to routes
through the ``get_app_context`` dependency, which tests override.
"""

import logging
from dataclasses import dataclass, field

import redis.asyncio as redis
from fastapi import Request
from langchain_core.language_models import BaseChatModel

from besttutor.ai.cache import CacheAdapter, build_cache, create_redis_client
from besttutor.ai.errors import RetryConfig
from besttutor.ai.limiter import (
    MemoryPointsStore,
    PointsStore,
    RateLimiter,
    RedisPointsStore,
    RequestThrottle,
    build_rate_limiters,
    build_request_throttles,
)
from besttutor.ai.provider import create_llm
from besttutor.ai.structured import StructuredGenerator
from besttutor.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    llm: BaseChatModel
    cache: CacheAdapter
    limiters: dict[str, RateLimiter]
    throttles: dict[str, RequestThrottle]
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    redis_client: "redis.Redis | None" = None

    def generator(self, service: str = "text") -> StructuredGenerator:
        """Structured generator bound to the limiter of ``service``."""
        return StructuredGenerator(
            self.llm,
            limiter=self.limiters.get(service),
            cache=self.cache,
            retry_config=self.retry_config,
        )

    async def aclose(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            logger.info("Redis connection closed")


def build_app_context(settings: Settings, llm: BaseChatModel | None = None) -> AppContext:
    """Build every shared AI service from configuration.

    A configured ``REDIS_URL`` makes the cache and the rate-limit counters
    shared across instances; otherwise both are process local.
    """
    redis_client = create_redis_client(settings.redis_url) if settings.hosted_cache_configured else None
    store: PointsStore = RedisPointsStore(redis_client) if redis_client is not None else MemoryPointsStore()

    context = AppContext(
        settings=settings,
        llm=llm or create_llm(settings),
        cache=build_cache(settings, client=redis_client),
        limiters=build_rate_limiters(settings, store),
        throttles=build_request_throttles(settings, store),
        retry_config=RetryConfig(
            max_retries=settings.ai_max_retries,
            base_delay_ms=settings.ai_retry_base_delay_ms,
            max_delay_ms=settings.ai_retry_max_delay_ms,
            timeout_seconds=settings.ai_timeout_seconds,
        ),
        redis_client=redis_client,
    )
    logger.info(
        "App context ready (cache=%s, limiters=%s)",
        context.cache.backend,
        ", ".join(sorted(context.limiters)),
    )
    return context


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context
