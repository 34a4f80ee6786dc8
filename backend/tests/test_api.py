"""
Tests for the HTTP endpoints and error mapping.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta

import pytest
from httpx import AsyncClient, ASGITransport

from boxoffice.main import app
from boxoffice.api.deps import get_services
from boxoffice.bootstrap import build_services
from boxoffice.core.exceptions import LockTimeout
from boxoffice.services.interfaces.inventory_lock import InventoryLock

USER = {"X-User-Id": "1"}


def _purchase(ticket_type, quantity=2, method="pm_test_ok"):
    return {
        "event_id": ticket_type.event_id,
        "ticket_type_id": ticket_type.id,
        "quantity": quantity,
        "payment_method_id": method,
    }


@pytest.mark.asyncio
async def test_purchase_tickets(client: AsyncClient, ticket_type):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(ticket_type),
        headers={**USER, "Idempotency-Key": "abc"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "purchased"
    assert len(data["ticket_ids"]) == 2


@pytest.mark.asyncio
async def test_purchase_replay_returns_same_tickets(client: AsyncClient, ticket_type):
    headers = {**USER, "Idempotency-Key": "abc"}
    first = await client.post("/api/v1/tickets/purchase", json=_purchase(ticket_type), headers=headers)
    second = await client.post("/api/v1/tickets/purchase", json=_purchase(ticket_type), headers=headers)

    assert second.status_code == 201
    assert second.json() == first.json()


@pytest.mark.asyncio
async def test_purchase_key_in_body(client: AsyncClient, ticket_type):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json={**_purchase(ticket_type), "idempotency_key": "from-body"},
        headers=USER,
    )

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_purchase_without_key(client: AsyncClient, ticket_type):
    response = await client.post("/api/v1/tickets/purchase", json=_purchase(ticket_type), headers=USER)

    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "VALIDATION_FAILED"


@pytest.mark.asyncio
async def test_purchase_without_user(client: AsyncClient, ticket_type):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(ticket_type),
        headers={"Idempotency-Key": "abc"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_purchase_invalid_quantity(client: AsyncClient, ticket_type):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(ticket_type, quantity=0),
        headers={**USER, "Idempotency-Key": "abc"},
    )

    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "VALIDATION_FAILED"


@pytest.mark.asyncio
async def test_purchase_sold_out(client: AsyncClient, make_ticket_type):
    scarce = await make_ticket_type(quantity=1)

    response = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(scarce, quantity=2),
        headers={**USER, "Idempotency-Key": "abc"},
    )

    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "INSUFFICIENT_AVAILABILITY"


@pytest.mark.asyncio
async def test_purchase_declined(client: AsyncClient, ticket_type):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(ticket_type, method="pm_test_fail"),
        headers={**USER, "Idempotency-Key": "abc"},
    )

    assert response.status_code == 402
    assert response.json()["error"]["kind"] == "PAYMENT_FAILED"


@pytest.mark.asyncio
async def test_purchase_unknown_ticket_type(client: AsyncClient, event):
    response = await client.post(
        "/api/v1/tickets/purchase",
        json={"event_id": event.id, "ticket_type_id": 999, "quantity": 1, "payment_method_id": "pm_test_ok"},
        headers={**USER, "Idempotency-Key": "abc"},
    )

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "NOT_FOUND"


class BusyLock(InventoryLock):
    backend = "busy"

    @asynccontextmanager
    async def hold(self, session, ticket_type_id):
        raise LockTimeout(ticket_type_id, 2.5)
        yield


@pytest.mark.asyncio
async def test_lock_timeout_is_retryable_503(settings, session_factory, redis_client, publisher, payments, ticket_type):
    services = build_services(
        settings, session_factory, redis_client=redis_client, payments=payments, publisher=publisher, lock=BusyLock()
    )
    app.dependency_overrides[get_services] = lambda: services

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post(
            "/api/v1/tickets/purchase",
            json=_purchase(ticket_type),
            headers={**USER, "Idempotency-Key": "abc"},
        )
    app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "3"
    assert response.json()["error"]["kind"] == "LOCK_TIMEOUT"


@pytest.mark.asyncio
async def test_list_cancel_and_refund(client: AsyncClient, ticket_type, reserve_ticket):
    purchase = await client.post(
        "/api/v1/tickets/purchase",
        json=_purchase(ticket_type, quantity=1),
        headers={**USER, "Idempotency-Key": "abc"},
    )
    purchased_id = purchase.json()["ticket_ids"][0]
    reserved = await reserve_ticket(ticket_type, user_id=1)

    listing = await client.get("/api/v1/tickets/", headers=USER)
    assert listing.status_code == 200
    assert {t["id"] for t in listing.json()} == {purchased_id, reserved.id}

    cancel = await client.post(f"/api/v1/tickets/{reserved.id}/cancel", json={"reason": "plans_changed"}, headers=USER)
    assert cancel.status_code == 200
    assert cancel.json()["status"] == "cancelled"

    refund = await client.post(f"/api/v1/tickets/{purchased_id}/refund", headers=USER)
    assert refund.status_code == 200
    assert refund.json()["status"] == "refunded"

    cancel_purchased_again = await client.post(f"/api/v1/tickets/{purchased_id}/cancel", headers=USER)
    assert cancel_purchased_again.status_code == 409
    assert cancel_purchased_again.json()["error"]["kind"] == "INVALID_TICKET_TRANSITION"


@pytest.mark.asyncio
async def test_other_users_ticket_not_found(client: AsyncClient, ticket_type, reserve_ticket):
    reserved = await reserve_ticket(ticket_type, user_id=2)

    response = await client.post(f"/api/v1/tickets/{reserved.id}/cancel", headers=USER)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_availability(client: AsyncClient, ticket_type):
    response = await client.get(f"/api/v1/events/{ticket_type.event_id}/ticket-types/{ticket_type.id}/availability")

    assert response.status_code == 200
    data = response.json()
    assert data["remaining"] == 10
    assert data["available"] is True
    assert data["price"] == 5000


@pytest.mark.asyncio
async def test_admin_sweep_and_reconcile(client: AsyncClient, ticket_type, reserve_ticket):
    await reserve_ticket(ticket_type, created_at=datetime.now(timezone.utc) - timedelta(hours=1))

    sweep = await client.post("/api/v1/admin/reservations/sweep")
    assert sweep.status_code == 200
    assert sweep.json() == {"expired_reservations": 1}

    reconcile = await client.post(f"/api/v1/admin/inventory/{ticket_type.id}/reconcile")
    assert reconcile.status_code == 200
    assert reconcile.json()["remaining"] == 10
    assert reconcile.json()["drift"] == 0


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    health = await client.get("/health")
    assert health.status_code == 200
    assert health.json()["database"] == "ok"
    assert health.json()["lock_backend"] == "local"

    metrics = await client.get("/metrics")
    assert metrics.status_code == 200
    assert "ticket_purchase_attempts_total" in metrics.text
