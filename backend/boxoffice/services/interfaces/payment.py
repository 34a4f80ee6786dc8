"""
Payment gateway interface.
The gateway's internals are outside this service; only the two calls the
saga makes are modelled.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    payment_id: Optional[str]
    message: str


class PaymentGateway(ABC):
    """
    Implementations:
    - SimulatedPaymentGateway: in-process stand-in with test payment methods
    - HttpPaymentGateway: JSON API client for a remote payment service
    """

    @abstractmethod
    async def process_payment(
        self,
        payment_method_id: str,
        amount: int,
        currency: str,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Charge `amount` minor units.

        A decline is a PaymentResult with success=False. Transport problems
        may raise; the saga treats a raise or a timeout exactly like a decline.
        """
        pass

    @abstractmethod
    async def refund_payment(self, payment_id: str, amount: int) -> PaymentResult:
        """Refund `amount` minor units of a previous charge."""
        pass
