from boxoffice.schemas.purchase import PurchaseRequest, PurchaseResponse
from boxoffice.schemas.ticket import (
    TicketResponse,
    CancelTicketRequest,
    RefundResponse,
    AvailabilityResponse,
    SweepResponse,
    ReconcileResponse,
)

__all__ = [
    "PurchaseRequest", "PurchaseResponse",
    "TicketResponse", "CancelTicketRequest", "RefundResponse",
    "AvailabilityResponse", "SweepResponse", "ReconcileResponse",
]
