"""
Redis caching service for availability reads.

CACHING STRATEGY
================

What we cache:
  - Ticket availability per ticket type (remaining count, price)
    key: "ticket.availability.{event_id}.{ticket_type_id}"
  - A user's ticket list
    key: "user.tickets.{user_id}"

What we never cache:
  - Anything the purchase path decides on. The availability check under
    the inventory lock always counts live ticket rows; the cache only
    serves read-only browsing, where a few seconds of staleness is fine.

Invalidation strategy:
  - After every committed change to live tickets (purchase, compensation,
    cancel, refund, sweep) the saga invalidates the event's availability
    keys by pattern and the affected user's ticket list.
  - TTL-based expiry as safety net (REDIS_CACHE_TTL).

Failure policy:
  - Every operation is best-effort. Redis errors are logged and counted,
    reads fall through to the producer, invalidations are dropped. Nothing
    here raises into the business path.
"""

import json
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as redis

from boxoffice.services.interfaces.notifier import CacheInvalidator
from boxoffice.core.metrics import record_cache_operation, side_effect_failures
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

AVAILABILITY_PREFIX = "ticket.availability."
USER_TICKETS_PREFIX = "user.tickets."


def availability_key(event_id: int, ticket_type_id: int) -> str:
    return f"{AVAILABILITY_PREFIX}{event_id}.{ticket_type_id}"


def event_availability_pattern(event_id: int) -> str:
    return f"{AVAILABILITY_PREFIX}{event_id}.*"


def user_tickets_key(user_id: int) -> str:
    return f"{USER_TICKETS_PREFIX}{user_id}"


class CacheService(CacheInvalidator):
    def __init__(self, client: Optional[redis.Redis], default_ttl: int = 300):
        self.client = client
        self.default_ttl = default_ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def get(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """Return the cached value for `key`, or produce, store and return it."""
        if not self.enabled:
            return await producer()

        try:
            data = await self.client.get(key)
        except Exception as e:
            record_cache_operation("get", "error")
            logger.error("cache_get_error", key=key, error=str(e))
            return await producer()

        if data is not None:
            record_cache_operation("get", "hit")
            logger.debug("cache_hit", key=key)
            return json.loads(data)

        record_cache_operation("get", "miss")
        value = await producer()
        await self.set(key, value, ttl)
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if not self.enabled:
            return

        ttl = ttl or self.default_ttl
        try:
            await self.client.setex(key, ttl, json.dumps(value, default=str))
            logger.debug("cache_set", key=key, ttl=ttl)
        except Exception as e:
            record_cache_operation("set", "error")
            logger.error("cache_set_error", key=key, error=str(e))

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return True

        try:
            await self.client.delete(key)
            return True
        except Exception as e:
            record_cache_operation("delete", "error")
            logger.error("cache_delete_error", key=key, error=str(e))
            return False

    async def delete_pattern(self, pattern: str) -> bool:
        """
        Delete every key matching `pattern`.
        SCAN keeps Redis responsive; the availability keyspace per event is small.
        """
        if not self.enabled:
            return True

        try:
            deleted = 0
            async for key in self.client.scan_iter(match=pattern, count=100):
                await self.client.delete(key)
                deleted += 1
            logger.info("cache_invalidated", pattern=pattern, keys_deleted=deleted)
            return True
        except Exception as e:
            record_cache_operation("delete_pattern", "error")
            logger.error("cache_invalidation_error", pattern=pattern, error=str(e))
            return False

    async def invalidate(self, *keys_or_patterns: str) -> None:
        for item in keys_or_patterns:
            if "*" in item:
                ok = await self.delete_pattern(item)
            else:
                ok = await self.delete(item)
            if not ok:
                side_effect_failures.labels(channel="cache").inc()

    async def stats(self) -> dict:
        """Get Redis cache statistics for monitoring."""
        if not self.enabled:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "status": "connected",
                "hits": hits,
                "misses": misses,
                "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}
