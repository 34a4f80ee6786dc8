"""
Tests for the payment gateway adapters.
"""

import json
import random

import httpx
import pytest

from boxoffice.core.config import Settings
from boxoffice.services.payment_service import (
    HttpPaymentGateway,
    SimulatedPaymentGateway,
    get_payment_gateway,
)


@pytest.fixture
def gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway(
        supported_currencies=["USD", "EUR"],
        min_amount=1,
        max_amount=100_000,
        latency=0.0,
        success_rate=0.0,
        rng=random.Random(42),
    )


@pytest.mark.asyncio
async def test_simulated_test_method_approved(gateway: SimulatedPaymentGateway):
    result = await gateway.process_payment("pm_test_visa", 2500, "usd", metadata={"order": 1})

    assert result.success is True
    assert result.payment_id.startswith("pi_")
    assert gateway.charges[0]["amount"] == 2500


@pytest.mark.asyncio
async def test_simulated_fail_method_declined(gateway: SimulatedPaymentGateway):
    result = await gateway.process_payment("pm_test_fail", 2500, "USD")

    assert result.success is False
    assert result.payment_id is None
    assert gateway.charges == []


@pytest.mark.asyncio
async def test_simulated_random_decline(gateway: SimulatedPaymentGateway):
    result = await gateway.process_payment("pm_card_real", 2500, "USD")

    assert result.success is False
    assert "insufficient funds" in result.message


@pytest.mark.asyncio
async def test_simulated_rejects_unsupported_currency(gateway: SimulatedPaymentGateway):
    result = await gateway.process_payment("pm_test_visa", 2500, "JPY")

    assert result.success is False
    assert "JPY" in result.message


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, 100_001])
async def test_simulated_rejects_out_of_range_amount(gateway: SimulatedPaymentGateway, amount):
    result = await gateway.process_payment("pm_test_visa", amount, "USD")

    assert result.success is False


@pytest.mark.asyncio
async def test_simulated_error_method_raises(gateway: SimulatedPaymentGateway):
    with pytest.raises(ConnectionError):
        await gateway.process_payment("pm_test_error", 2500, "USD")


@pytest.mark.asyncio
async def test_simulated_refund(gateway: SimulatedPaymentGateway):
    result = await gateway.refund_payment("pi_abc", 2500)

    assert result.success is True
    assert result.payment_id.startswith("re_")
    assert gateway.refunds == [{"refund_id": result.payment_id, "payment_id": "pi_abc", "amount": 2500}]


def _http_gateway(handler) -> HttpPaymentGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://payments.test")
    return HttpPaymentGateway(client)


@pytest.mark.asyncio
async def test_http_gateway_charge():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["idempotency_key"] = request.headers.get("Idempotency-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "payment_id": "pi_remote", "message": "ok"})

    gateway = _http_gateway(handler)
    result = await gateway.process_payment("pm_1", 1500, "EUR", metadata={"idempotency_key": "key-9"})

    assert result.success is True
    assert result.payment_id == "pi_remote"
    assert seen["path"] == "/v1/payments"
    assert seen["idempotency_key"] == "key-9"
    assert seen["body"]["amount"] == 1500
    await gateway.client.aclose()


@pytest.mark.asyncio
async def test_http_gateway_decline_on_402():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, json={"success": False, "payment_id": None, "message": "card_declined"})

    gateway = _http_gateway(handler)
    result = await gateway.process_payment("pm_1", 1500, "EUR")

    assert result.success is False
    assert result.message == "card_declined"
    await gateway.client.aclose()


@pytest.mark.asyncio
async def test_http_gateway_server_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "maintenance"})

    gateway = _http_gateway(handler)
    with pytest.raises(httpx.HTTPStatusError):
        await gateway.process_payment("pm_1", 1500, "EUR")
    await gateway.client.aclose()


@pytest.mark.asyncio
async def test_http_gateway_refund():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/refunds"
        assert request.headers["Idempotency-Key"] == "refund-pi_remote"
        return httpx.Response(200, json={"success": True, "payment_id": "re_remote", "message": "ok"})

    gateway = _http_gateway(handler)
    result = await gateway.refund_payment("pi_remote", 1500)

    assert result.payment_id == "re_remote"
    await gateway.client.aclose()


def test_gateway_factory():
    assert isinstance(get_payment_gateway(Settings(_env_file=None)), SimulatedPaymentGateway)

    client = httpx.AsyncClient()
    assert isinstance(get_payment_gateway(Settings(_env_file=None, PAYMENT_GATEWAY="http"), client), HttpPaymentGateway)

    with pytest.raises(ValueError):
        get_payment_gateway(Settings(_env_file=None, PAYMENT_GATEWAY="http"))
    with pytest.raises(ValueError):
        get_payment_gateway(Settings(_env_file=None, PAYMENT_GATEWAY="barter"))
