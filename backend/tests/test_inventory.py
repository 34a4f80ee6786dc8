"""
Tests for inventory counting, the lock, and counter reconciliation.
"""

import asyncio

import pytest
from sqlalchemy import update

from boxoffice.bootstrap import Services
from boxoffice.core.config import Settings
from boxoffice.core.exceptions import LockTimeout, NotFoundError
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.models.ticket_type import TicketType
from boxoffice.services.interfaces.local_lock import LocalInventoryLock
from boxoffice.services.lock_service import RowInventoryLock, RedisInventoryLock
from boxoffice.services.strategy_factory import get_inventory_lock


@pytest.mark.asyncio
async def test_availability_counts_only_live_tickets(services: Services, ticket_type, reserve_ticket, session_factory):
    tickets = [await reserve_ticket(ticket_type) for _ in range(4)]

    async with session_factory() as session:
        await session.execute(
            update(Ticket).where(Ticket.id == tickets[0].id).values(status=TicketStatus.CANCELLED.value)
        )
        await session.execute(
            update(Ticket).where(Ticket.id == tickets[1].id).values(status=TicketStatus.PURCHASED.value)
        )
        await session.execute(
            update(Ticket).where(Ticket.id == tickets[2].id).values(status=TicketStatus.REFUNDED.value)
        )
        await session.commit()

    async def _check(session, locked_type):
        return await services.inventory.check_availability(session, locked_type.id, 8)

    availability = await services.inventory.with_lock(ticket_type.id, _check)

    # 10 total - (1 reserved + 1 purchased); cancelled and refunded are free
    assert availability.remaining == 8
    assert availability.available is True


@pytest.mark.asyncio
async def test_availability_rejects_more_than_remaining(services: Services, make_ticket_type, reserve_ticket):
    scarce = await make_ticket_type(quantity=2)
    await reserve_ticket(scarce)

    async def _check(session, locked_type):
        return await services.inventory.check_availability(session, locked_type.id, 2)

    availability = await services.inventory.with_lock(scarce.id, _check)

    assert availability.available is False
    assert availability.remaining == 1


@pytest.mark.asyncio
async def test_sync_remaining_follows_live_count(services: Services, ticket_type, reserve_ticket, load):
    await reserve_ticket(ticket_type)
    await reserve_ticket(ticket_type)

    stored = await load(TicketType, ticket_type.id)
    assert stored.remaining_quantity == 8


@pytest.mark.asyncio
async def test_with_lock_unknown_ticket_type(services: Services):
    async def _noop(session, locked_type):
        return None

    with pytest.raises(NotFoundError):
        await services.inventory.with_lock(999, _noop)


@pytest.mark.asyncio
async def test_with_lock_rolls_back_on_error(services: Services, ticket_type, load):
    async def _explode(session, locked_type):
        locked_type.remaining_quantity = 0
        await session.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await services.inventory.with_lock(ticket_type.id, _explode)

    assert (await load(TicketType, ticket_type.id)).remaining_quantity == 10


@pytest.mark.asyncio
async def test_reconcile_repairs_drift(services: Services, ticket_type, reserve_ticket, session_factory, load):
    await reserve_ticket(ticket_type)
    async with session_factory() as session:
        await session.execute(
            update(TicketType).where(TicketType.id == ticket_type.id).values(remaining_quantity=3)
        )
        await session.commit()

    report = await services.inventory.reconcile(ticket_type.id)

    assert report["previous"] == 3
    assert report["remaining"] == 9
    assert report["drift"] == -6
    assert (await load(TicketType, ticket_type.id)).remaining_quantity == 9


@pytest.mark.asyncio
async def test_reconcile_all_reports_only_drifted(services: Services, make_ticket_type, session_factory):
    healthy = await make_ticket_type(quantity=5)
    drifted = await make_ticket_type(quantity=5)
    async with session_factory() as session:
        await session.execute(update(TicketType).where(TicketType.id == drifted.id).values(remaining_quantity=1))
        await session.commit()

    reports = await services.inventory.reconcile_all()

    assert [r["ticket_type_id"] for r in reports] == [drifted.id]
    assert healthy.id not in [r["ticket_type_id"] for r in reports]


@pytest.mark.asyncio
async def test_get_availability_is_cached_and_invalidated(services: Services, ticket_type, redis_client, reserve_ticket):
    first = await services.inventory.get_availability(ticket_type.event_id, ticket_type.id)
    assert first["remaining"] == 10
    assert f"ticket.availability.{ticket_type.event_id}.{ticket_type.id}" in redis_client.store

    await reserve_ticket(ticket_type)
    # Served from cache until invalidated
    assert (await services.inventory.get_availability(ticket_type.event_id, ticket_type.id))["remaining"] == 10

    await services.cache.invalidate(f"ticket.availability.{ticket_type.event_id}.*")
    assert (await services.inventory.get_availability(ticket_type.event_id, ticket_type.id))["remaining"] == 9


@pytest.mark.asyncio
async def test_get_availability_wrong_event(services: Services, ticket_type):
    with pytest.raises(NotFoundError):
        await services.inventory.get_availability(ticket_type.event_id + 100, ticket_type.id)


@pytest.mark.asyncio
async def test_local_lock_times_out():
    lock = LocalInventoryLock(timeout=0.05)
    entered = asyncio.Event()

    async def _holder():
        async with lock.hold(None, 1):
            entered.set()
            await asyncio.sleep(0.3)

    holder = asyncio.create_task(_holder())
    await entered.wait()

    with pytest.raises(LockTimeout) as exc_info:
        async with lock.hold(None, 1):
            pass
    assert exc_info.value.retryable is True

    # Other ticket types are not blocked
    async with lock.hold(None, 2):
        pass

    await holder


@pytest.mark.asyncio
async def test_local_lock_serializes_holders():
    lock = LocalInventoryLock(timeout=1.0)
    inside = 0
    peak = 0

    async def _worker():
        nonlocal inside, peak
        async with lock.hold(None, 1):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(_worker() for _ in range(10)))

    assert peak == 1


def test_lock_factory_selection():
    assert isinstance(
        get_inventory_lock(Settings(_env_file=None, INVENTORY_LOCK_BACKEND="local")), LocalInventoryLock
    )
    assert isinstance(
        get_inventory_lock(Settings(_env_file=None, INVENTORY_LOCK_BACKEND="row")), RowInventoryLock
    )
    assert isinstance(
        get_inventory_lock(Settings(_env_file=None, INVENTORY_LOCK_BACKEND="redis"), redis_client=object()),
        RedisInventoryLock,
    )


def test_row_lock_falls_back_to_local_on_sqlite():
    settings = Settings(_env_file=None, INVENTORY_LOCK_BACKEND="row", DATABASE_URL="sqlite+aiosqlite:///x.db")

    assert isinstance(get_inventory_lock(settings), LocalInventoryLock)


def test_lock_factory_rejects_bad_config():
    with pytest.raises(ValueError):
        get_inventory_lock(Settings(_env_file=None, INVENTORY_LOCK_BACKEND="redis"))
    with pytest.raises(ValueError):
        get_inventory_lock(Settings(_env_file=None, INVENTORY_LOCK_BACKEND="zookeeper"))
