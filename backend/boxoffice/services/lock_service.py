"""
Cross-process inventory locks.

Row lock (default)
==================
  SELECT id FROM ticket_types WHERE id = :id FOR UPDATE

  The lock lives in the caller's transaction and is released by its
  COMMIT or ROLLBACK, so the availability count, the ticket inserts and
  the counter update all happen under it. PostgreSQL's `lock_timeout`
  (set per transaction with SET LOCAL) bounds the wait; the resulting
  lock_not_available error (SQLSTATE 55P03) becomes LockTimeout.

Redis lock
==========
  For deployments where the lock must not live in the database (sharded
  storage, read replicas behind a pooler in transaction mode).
  redis-py's Lock gives a token-owned key with a TTL; `blocking_timeout`
  bounds the wait. The TTL must comfortably exceed the critical section,
  which is short: it never includes the payment call.

  Unlike the row lock this one is released *after* the caller commits;
  InventoryService enforces that ordering.
"""

import time
from contextlib import asynccontextmanager

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.services.interfaces.inventory_lock import InventoryLock
from boxoffice.models.ticket_type import TicketType
from boxoffice.core.exceptions import LockTimeout, InfrastructureError
from boxoffice.core.metrics import lock_wait, lock_timeouts
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_timeout(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    return "lock timeout" in str(orig).lower()


class RowInventoryLock(InventoryLock):
    """Pessimistic row lock on the ticket type."""

    backend = "row"

    def __init__(self, timeout: float):
        self.timeout = timeout

    @asynccontextmanager
    async def hold(self, session: AsyncSession, ticket_type_id: int):
        started = time.perf_counter()
        try:
            if session.get_bind().dialect.name == "postgresql":
                # SET does not take bind parameters; the value is our own float
                await session.execute(
                    text(f"SET LOCAL lock_timeout = '{int(self.timeout * 1000)}ms'")
                )
            await session.execute(
                select(TicketType.id).where(TicketType.id == ticket_type_id).with_for_update()
            )
        except DBAPIError as exc:
            if _is_lock_timeout(exc):
                lock_timeouts.labels(backend=self.backend).inc()
                await session.rollback()
                raise LockTimeout(ticket_type_id, self.timeout) from exc
            raise
        lock_wait.labels(backend=self.backend).observe(time.perf_counter() - started)

        # Released by the transaction's commit/rollback
        yield


class RedisInventoryLock(InventoryLock):
    """Distributed lock keyed per ticket type."""

    backend = "redis"

    def __init__(self, client: redis.Redis, timeout: float, ttl: int, prefix: str = "lock:inventory"):
        self.client = client
        self.timeout = timeout
        self.ttl = ttl
        self.prefix = prefix

    def _key(self, ticket_type_id: int) -> str:
        return f"{self.prefix}:{ticket_type_id}"

    @asynccontextmanager
    async def hold(self, session: AsyncSession, ticket_type_id: int):
        lock = self.client.lock(
            self._key(ticket_type_id),
            timeout=self.ttl,
            blocking_timeout=self.timeout,
        )
        started = time.perf_counter()
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.error("inventory_lock_unavailable", ticket_type_id=ticket_type_id, error=str(exc))
            raise InfrastructureError("Inventory lock store unavailable") from exc

        if not acquired:
            lock_timeouts.labels(backend=self.backend).inc()
            raise LockTimeout(ticket_type_id, self.timeout)
        lock_wait.labels(backend=self.backend).observe(time.perf_counter() - started)

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as exc:
                # TTL ran out while we held it; someone else may have entered
                logger.error(
                    "inventory_lock_lost",
                    ticket_type_id=ticket_type_id,
                    ttl=self.ttl,
                    error=str(exc),
                )
