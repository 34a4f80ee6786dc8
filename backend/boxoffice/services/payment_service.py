"""
Payment gateway adapters.

SimulatedPaymentGateway mirrors a card processor's test mode so the whole
saga can be exercised without a real processor:

  pm_test_fail     -> declined
  pm_test_timeout  -> never answers (the saga's timeout fires)
  pm_test_error    -> transport error
  pm_test_*        -> approved
  anything else    -> approved with probability PAYMENT_SUCCESS_RATE

HttpPaymentGateway talks to a payment service over JSON/HTTP. The client
idempotency key travels as the Idempotency-Key header so a retried charge
is deduplicated on the processor side as well.
"""

import asyncio
import random
import uuid
from typing import Optional

import httpx

from boxoffice.services.interfaces.payment import PaymentGateway, PaymentResult
from boxoffice.core.config import Settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

TEST_FAIL = "pm_test_fail"
TEST_TIMEOUT = "pm_test_timeout"
TEST_ERROR = "pm_test_error"
TEST_PREFIX = "pm_test_"


class SimulatedPaymentGateway(PaymentGateway):
    def __init__(
        self,
        supported_currencies: list[str],
        min_amount: int,
        max_amount: int,
        latency: float = 0.0,
        success_rate: float = 0.95,
        hang_seconds: float = 3600.0,
        rng: Optional[random.Random] = None,
    ):
        self.supported_currencies = {c.upper() for c in supported_currencies}
        self.min_amount = min_amount
        self.max_amount = max_amount
        self.latency = latency
        self.success_rate = success_rate
        self.hang_seconds = hang_seconds
        self._rng = rng or random.Random()
        self.charges: list[dict] = []
        self.refunds: list[dict] = []

    async def process_payment(
        self,
        payment_method_id: str,
        amount: int,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        if currency.upper() not in self.supported_currencies:
            return PaymentResult(False, None, f"Payment processing error: Currency {currency} is not supported")

        if not self.min_amount <= amount <= self.max_amount:
            return PaymentResult(
                False,
                None,
                f"Payment processing error: Amount must be between {self.min_amount} and {self.max_amount}",
            )

        logger.info(
            "payment_processing",
            payment_method_id=payment_method_id,
            amount=amount,
            currency=currency,
        )
        if self.latency:
            await asyncio.sleep(self.latency)

        if payment_method_id == TEST_TIMEOUT:
            await asyncio.sleep(self.hang_seconds)
        if payment_method_id == TEST_ERROR:
            raise ConnectionError("Simulated payment gateway outage")

        if payment_method_id == TEST_FAIL:
            logger.warning("payment_declined", payment_method_id=payment_method_id, reason="test_payment_method_fail")
            return PaymentResult(False, None, "Payment failed - test payment method")

        approved = payment_method_id.startswith(TEST_PREFIX) or self._rng.random() < self.success_rate
        if not approved:
            logger.warning("payment_declined", payment_method_id=payment_method_id, reason="insufficient_funds")
            return PaymentResult(False, None, "Payment failed - insufficient funds")

        payment_id = f"pi_{uuid.uuid4().hex[:24]}"
        self.charges.append({"payment_id": payment_id, "amount": amount, "currency": currency, "metadata": metadata or {}})
        logger.info("payment_succeeded", payment_id=payment_id, amount=amount)
        return PaymentResult(True, payment_id, "Payment processed successfully")

    async def refund_payment(self, payment_id: str, amount: int) -> PaymentResult:
        logger.info("refund_processing", payment_id=payment_id, amount=amount)
        if self.latency:
            await asyncio.sleep(self.latency)

        refund_id = f"re_{uuid.uuid4().hex[:24]}"
        self.refunds.append({"refund_id": refund_id, "payment_id": payment_id, "amount": amount})
        logger.info("refund_succeeded", refund_id=refund_id, original_payment_id=payment_id, amount=amount)
        return PaymentResult(True, refund_id, "Refund processed successfully")


class HttpPaymentGateway(PaymentGateway):
    """
    Client for a JSON payment API.

    POST /v1/payments  {payment_method_id, amount, currency, metadata}
    POST /v1/refunds   {payment_id, amount}
    -> {"success": bool, "payment_id": str | null, "message": str}

    402 responses carry a decline in the same shape. Other error statuses
    and transport failures raise httpx errors.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def process_payment(
        self,
        payment_method_id: str,
        amount: int,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        metadata = metadata or {}
        headers = {}
        if metadata.get("idempotency_key"):
            headers["Idempotency-Key"] = str(metadata["idempotency_key"])

        response = await self.client.post(
            "/v1/payments",
            json={
                "payment_method_id": payment_method_id,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
            },
            headers=headers,
        )
        return self._parse(response)

    async def refund_payment(self, payment_id: str, amount: int) -> PaymentResult:
        response = await self.client.post(
            "/v1/refunds",
            json={"payment_id": payment_id, "amount": amount},
            headers={"Idempotency-Key": f"refund-{payment_id}"},
        )
        return self._parse(response)

    @staticmethod
    def _parse(response: httpx.Response) -> PaymentResult:
        if response.status_code != httpx.codes.PAYMENT_REQUIRED:
            response.raise_for_status()

        body = response.json()
        return PaymentResult(
            success=bool(body.get("success")),
            payment_id=body.get("payment_id"),
            message=body.get("message", ""),
        )


def create_payment_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.PAYMENT_GATEWAY_URL,
        headers={"Authorization": f"Bearer {settings.PAYMENT_API_KEY}"},
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
    )


def get_payment_gateway(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> PaymentGateway:
    if settings.PAYMENT_GATEWAY == "http":
        if http_client is None:
            raise ValueError("PAYMENT_GATEWAY=http requires an HTTP client")
        return HttpPaymentGateway(http_client)

    if settings.PAYMENT_GATEWAY == "simulated":
        return SimulatedPaymentGateway(
            supported_currencies=settings.SUPPORTED_CURRENCIES,
            min_amount=settings.MIN_PAYMENT_AMOUNT,
            max_amount=settings.MAX_PAYMENT_AMOUNT,
            latency=settings.PAYMENT_SIMULATED_LATENCY,
            success_rate=settings.PAYMENT_SUCCESS_RATE,
        )

    raise ValueError(f"Unknown PAYMENT_GATEWAY: {settings.PAYMENT_GATEWAY}")
