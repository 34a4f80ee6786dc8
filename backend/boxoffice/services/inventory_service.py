"""
Inventory service: per-ticket-type lock and availability checks.

CONCURRENCY STRATEGY: Pessimistic lock per ticket type
======================================================

Problem:
  Two buyers ask for the last ticket at the same moment. Both count one
  free unit, both insert a reserved ticket. Result: oversold.

Solution:
  Every "check availability -> reserve" sequence for a ticket type runs
  inside with_lock(), which holds an exclusive lock on that ticket type
  (see InventoryLock) for one short transaction:

    1. acquire lock (bounded wait, LockTimeout after LOCK_TIMEOUT_SECONDS)
    2. load ticket type
    3. run the caller's function: count live tickets, insert reservations...
    4. COMMIT
    5. release lock

  Different ticket types never contend. Within one type, holders are
  serialized in no particular order.

Availability is always COUNTED:
  remaining = quantity - count(tickets WHERE status IN (reserved, purchased))

  Cancelled and refunded tickets never hold capacity. The denormalized
  `remaining_quantity` column is a read-path cache of that number: it is
  only written by sync_remaining() inside the lock, right after a count,
  and reconcile() repairs and reports any drift.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.services.interfaces.inventory_lock import InventoryLock
from boxoffice.services.cache_service import CacheService, availability_key
from boxoffice.models.ticket_type import TicketType
from boxoffice.models.ticket import Ticket, LIVE_STATUSES
from boxoffice.core.exceptions import NotFoundError
from boxoffice.core.metrics import remaining_drift
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Availability:
    ticket_type_id: int
    available: bool
    remaining: int


class InventoryService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: InventoryLock,
        cache: Optional[CacheService] = None,
        cache_ttl: int = 300,
    ):
        self._session_factory = session_factory
        self._lock = lock
        self._cache = cache
        self._cache_ttl = cache_ttl

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @property
    def lock_backend(self) -> str:
        return self._lock.backend

    async def with_lock(
        self,
        ticket_type_id: int,
        fn: Callable[[AsyncSession, TicketType], Awaitable[T]],
    ) -> T:
        """
        Run `fn(session, ticket_type)` as one transaction under the ticket type's lock.

        `fn` must not commit; it is committed here before the lock is released.
        Any exception rolls the transaction back and propagates.
        """
        async with self._session_factory() as session:
            async with self._lock.hold(session, ticket_type_id):
                try:
                    ticket_type = await session.get(TicketType, ticket_type_id)
                    if ticket_type is None:
                        raise NotFoundError("Ticket type", ticket_type_id)

                    result = await fn(session, ticket_type)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        return result

    async def check_availability(
        self,
        session: AsyncSession,
        ticket_type_id: int,
        quantity: int,
    ) -> Availability:
        """Count-based availability. Only meaningful inside with_lock()."""
        ticket_type = await session.get(TicketType, ticket_type_id)
        if ticket_type is None:
            raise NotFoundError("Ticket type", ticket_type_id)

        remaining = max(0, ticket_type.quantity - await self._count_live(session, ticket_type_id))
        return Availability(
            ticket_type_id=ticket_type_id,
            available=remaining >= quantity,
            remaining=remaining,
        )

    async def sync_remaining(self, session: AsyncSession, ticket_type: TicketType) -> int:
        """Rewrite the denormalized counter from the live count. Call inside with_lock()."""
        remaining = ticket_type.quantity - await self._count_live(session, ticket_type.id)
        ticket_type.remaining_quantity = remaining
        await session.flush()
        return remaining

    async def reconcile(self, ticket_type_id: int) -> dict:
        """Compare the counter with the live count and repair it."""

        async def _reconcile(session: AsyncSession, ticket_type: TicketType) -> dict:
            previous = ticket_type.remaining_quantity
            actual = await self.sync_remaining(session, ticket_type)
            return {
                "ticket_type_id": ticket_type.id,
                "event_id": ticket_type.event_id,
                "previous": previous,
                "remaining": actual,
                "drift": previous - actual,
            }

        report = await self.with_lock(ticket_type_id, _reconcile)
        if report["drift"]:
            remaining_drift.inc()
            logger.warning("inventory_counter_drift_repaired", **report)
        return report

    async def reconcile_all(self) -> list[dict]:
        """Reconcile every ticket type; returns the reports that found drift."""
        async with self._session_factory() as session:
            ids = (await session.execute(select(TicketType.id).order_by(TicketType.id))).scalars().all()

        drifted = []
        for ticket_type_id in ids:
            report = await self.reconcile(ticket_type_id)
            if report["drift"]:
                drifted.append(report)
        return drifted

    async def get_availability(self, event_id: int, ticket_type_id: int) -> dict:
        """
        Read-path availability for browsing, served through the cache.
        Never used to decide a reservation.
        """

        async def _produce() -> dict:
            async with self._session_factory() as session:
                ticket_type = await session.get(TicketType, ticket_type_id)
                if ticket_type is None or ticket_type.event_id != event_id:
                    raise NotFoundError("Ticket type", ticket_type_id)
                live = await self._count_live(session, ticket_type_id)

            remaining = max(0, ticket_type.quantity - live)
            return {
                "event_id": ticket_type.event_id,
                "ticket_type_id": ticket_type.id,
                "name": ticket_type.name,
                "price": ticket_type.price,
                "currency": ticket_type.currency,
                "quantity": ticket_type.quantity,
                "remaining": remaining,
                "available": remaining > 0,
            }

        if self._cache is None:
            return await _produce()
        return await self._cache.get(availability_key(event_id, ticket_type_id), _produce, self._cache_ttl)

    @staticmethod
    async def _count_live(session: AsyncSession, ticket_type_id: int) -> int:
        result = await session.execute(
            select(func.count(Ticket.id)).where(
                Ticket.ticket_type_id == ticket_type_id,
                Ticket.status.in_(LIVE_STATUSES),
            )
        )
        return result.scalar_one()
