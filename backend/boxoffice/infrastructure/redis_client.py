"""
Redis connection factory for caching, pub/sub and the distributed lock.
The client is created once at startup and passed to whoever needs it.
"""

from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from boxoffice.core.config import Settings
from boxoffice.core.metrics import redis_connection_errors
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


async def connect_redis(settings: Settings) -> Optional[redis.Redis]:
    """
    Create and ping a Redis client.

    Returns None when Redis is disabled or unreachable; callers degrade
    (no cache, null publisher) instead of failing startup.
    """
    if not settings.REDIS_ENABLED:
        return None

    client = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        redis_connection_errors.inc()
        logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=settings.REDIS_URL)
    return client


async def close_redis(client: Optional[redis.Redis]) -> None:
    """Close Redis connection on shutdown."""
    if client is not None:
        await client.aclose()
