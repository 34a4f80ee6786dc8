"""
Inventory lock factory.
Configures which mutual-exclusion mechanism guards the reserve step.
"""

from typing import Optional

import redis.asyncio as redis

from boxoffice.services.interfaces.inventory_lock import InventoryLock
from boxoffice.services.interfaces.local_lock import LocalInventoryLock
from boxoffice.services.lock_service import RowInventoryLock, RedisInventoryLock
from boxoffice.core.config import Settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


def get_inventory_lock(settings: Settings, redis_client: Optional[redis.Redis] = None) -> InventoryLock:
    """
    Build the configured lock.

    Strategy selection via INVENTORY_LOCK_BACKEND:
    - row:   PostgreSQL row lock (default)
    - redis: Redis lock, needs a live Redis client
    - local: in-process lock, single instance only

    SQLite silently drops FOR UPDATE, so "row" on SQLite degrades to the
    local lock rather than pretending to lock.
    """
    backend = settings.INVENTORY_LOCK_BACKEND

    if backend == "redis":
        if redis_client is None:
            raise ValueError("INVENTORY_LOCK_BACKEND=redis requires Redis to be enabled and reachable")
        return RedisInventoryLock(
            redis_client,
            timeout=settings.LOCK_TIMEOUT_SECONDS,
            ttl=settings.REDIS_LOCK_TTL_SECONDS,
        )

    if backend == "row":
        if settings.DATABASE_URL.startswith("sqlite"):
            logger.warning("row_lock_unsupported_on_sqlite", fallback="local")
            return LocalInventoryLock(timeout=settings.LOCK_TIMEOUT_SECONDS)
        return RowInventoryLock(timeout=settings.LOCK_TIMEOUT_SECONDS)

    if backend == "local":
        return LocalInventoryLock(timeout=settings.LOCK_TIMEOUT_SECONDS)

    raise ValueError(f"Unknown INVENTORY_LOCK_BACKEND: {backend}")
