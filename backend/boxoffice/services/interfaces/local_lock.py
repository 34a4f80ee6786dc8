"""
In-process inventory lock.
One asyncio.Lock per ticket type.
"""

import asyncio
import time
from collections import defaultdict
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.services.interfaces.inventory_lock import InventoryLock
from boxoffice.core.exceptions import LockTimeout
from boxoffice.core.metrics import lock_wait, lock_timeouts


class LocalInventoryLock(InventoryLock):
    """
    Serializes holders inside a single event loop.

    Use when:
    - One process serves all purchases (development, SQLite, tests)

    It gives no protection across processes or machines; production
    deployments use the row or Redis backends.
    """

    backend = "local"

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, session: AsyncSession, ticket_type_id: int):
        lock = self._locks[ticket_type_id]
        started = time.perf_counter()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            lock_timeouts.labels(backend=self.backend).inc()
            raise LockTimeout(ticket_type_id, self.timeout) from None
        lock_wait.labels(backend=self.backend).observe(time.perf_counter() - started)

        try:
            yield
        finally:
            lock.release()
