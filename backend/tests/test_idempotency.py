"""
Tests for the idempotency ledger.
"""

import asyncio
from datetime import datetime, timezone, timedelta

import pytest

from boxoffice.core.exceptions import CommandAlreadyProcessing
from boxoffice.models.idempotency import IdempotencyRecord, IdempotencyStatus
from boxoffice.services.idempotency_service import IdempotencyService, Proceed, CachedResult


@pytest.fixture
def ledger(session_factory) -> IdempotencyService:
    return IdempotencyService(session_factory)


@pytest.mark.asyncio
async def test_begin_new_key_proceeds(ledger: IdempotencyService):
    outcome = await ledger.begin("key-1", "PurchaseTickets")

    assert isinstance(outcome, Proceed)
    assert outcome.record.status == IdempotencyStatus.PROCESSING.value
    stored = await ledger.get("key-1", "PurchaseTickets")
    assert stored.is_processing


@pytest.mark.asyncio
async def test_begin_while_processing_raises(ledger: IdempotencyService):
    await ledger.begin("key-1", "PurchaseTickets")

    with pytest.raises(CommandAlreadyProcessing):
        await ledger.begin("key-1", "PurchaseTickets")


@pytest.mark.asyncio
async def test_completed_result_replayed_verbatim(ledger: IdempotencyService):
    outcome = await ledger.begin("key-1", "PurchaseTickets")
    await ledger.complete(outcome.record, {"ticket_ids": [3, 4], "status": "purchased"})

    replay = await ledger.begin("key-1", "PurchaseTickets")

    assert replay == CachedResult({"ticket_ids": [3, 4], "status": "purchased"})


@pytest.mark.asyncio
async def test_failed_record_allows_retry_with_new_record(ledger: IdempotencyService):
    first = await ledger.begin("key-1", "PurchaseTickets")
    await ledger.fail(first.record, "Payment failed - test payment method")

    failed = await ledger.get("key-1", "PurchaseTickets")
    assert failed.is_failed
    assert failed.result == {"error": "Payment failed - test payment method"}

    retry = await ledger.begin("key-1", "PurchaseTickets")

    assert isinstance(retry, Proceed)
    assert retry.record.id != first.record.id
    assert (await ledger.get("key-1", "PurchaseTickets")).is_processing


@pytest.mark.asyncio
async def test_same_key_is_independent_across_command_types(ledger: IdempotencyService):
    purchase = await ledger.begin("shared-key", "PurchaseTickets")
    refund = await ledger.begin("shared-key", "RefundTicket")

    assert isinstance(purchase, Proceed)
    assert isinstance(refund, Proceed)
    assert purchase.record.id != refund.record.id


@pytest.mark.asyncio
async def test_concurrent_begin_admits_exactly_one(ledger: IdempotencyService):
    results = await asyncio.gather(
        *(ledger.begin("race-key", "PurchaseTickets") for _ in range(5)),
        return_exceptions=True,
    )

    proceeded = [r for r in results if isinstance(r, Proceed)]
    rejected = [r for r in results if isinstance(r, CommandAlreadyProcessing)]
    assert len(proceeded) == 1
    assert len(rejected) == 4


@pytest.mark.asyncio
async def test_complete_in_callers_transaction(ledger: IdempotencyService, session_factory):
    outcome = await ledger.begin("key-1", "PurchaseTickets")

    async with session_factory() as session:
        await ledger.complete(outcome.record, {"ok": True}, session=session)
        # Not visible until the caller commits
        assert (await ledger.get("key-1", "PurchaseTickets")).is_processing
        await session.commit()

    assert (await ledger.get("key-1", "PurchaseTickets")).is_completed


@pytest.mark.asyncio
async def test_fail_stale_releases_abandoned_keys(ledger: IdempotencyService, session_factory):
    async with session_factory() as session:
        session.add(
            IdempotencyRecord(
                idempotency_key="abandoned",
                command_class="PurchaseTickets",
                status=IdempotencyStatus.PROCESSING.value,
                created_at=datetime.now(timezone.utc) - timedelta(hours=2),
            )
        )
        await session.commit()
    await ledger.begin("fresh", "PurchaseTickets")

    failed = await ledger.fail_stale(datetime.now(timezone.utc) - timedelta(minutes=30))

    assert failed == 1
    assert (await ledger.get("abandoned", "PurchaseTickets")).is_failed
    assert (await ledger.get("fresh", "PurchaseTickets")).is_processing
    assert isinstance(await ledger.begin("abandoned", "PurchaseTickets"), Proceed)


@pytest.mark.asyncio
async def test_purge_keeps_processing_rows(ledger: IdempotencyService):
    done = await ledger.begin("done", "PurchaseTickets")
    await ledger.complete(done.record, {"ok": True})
    await ledger.begin("running", "PurchaseTickets")

    purged = await ledger.purge(datetime.now(timezone.utc) + timedelta(minutes=1))

    assert purged == 1
    assert await ledger.get("done", "PurchaseTickets") is None
    assert (await ledger.get("running", "PurchaseTickets")).is_processing
