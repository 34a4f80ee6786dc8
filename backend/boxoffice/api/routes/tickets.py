"""
Ticket endpoints: purchase, cancel, refund and the caller's ticket list.

Purchases are idempotent per client key, sent as the Idempotency-Key
header (or `idempotency_key` in the purchase body). Refunds are idempotent
per ticket; their Idempotency-Key is only carried into the logs.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, status

from boxoffice.api.deps import get_services, get_current_user_id
from boxoffice.bootstrap import Services
from boxoffice.schemas.purchase import PurchaseRequest, PurchaseResponse
from boxoffice.schemas.ticket import TicketResponse, CancelTicketRequest, RefundResponse
from boxoffice.services.commands import PurchaseTickets, CancelTicket, RefundTicket
from boxoffice.core.exceptions import ValidationError
from boxoffice.core.logging import bind_idempotency_key

router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/purchase", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def purchase_tickets(
    purchase: PurchaseRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Reserve and pay for tickets in one call.

    Replaying a completed key returns the original result without charging
    again. A key whose first attempt is still running gets 409.
    """
    key = idempotency_key or purchase.idempotency_key
    if not key:
        raise ValidationError("Idempotency-Key header or idempotency_key field is required")
    bind_idempotency_key(key)

    return await services.bus.dispatch(
        PurchaseTickets(
            event_id=purchase.event_id,
            ticket_type_id=purchase.ticket_type_id,
            quantity=purchase.quantity,
            payment_method_id=purchase.payment_method_id,
            idempotency_key=key,
            user_id=user_id,
        )
    )


@router.post("/{ticket_id}/cancel", response_model=TicketResponse)
async def cancel_ticket(
    ticket_id: int,
    cancel: Optional[CancelTicketRequest] = Body(default=None),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Give up a reserved ticket. Purchased tickets are refunded instead."""
    reason = cancel.reason if cancel else "cancelled_by_user"
    return await services.bus.dispatch(CancelTicket(ticket_id=ticket_id, user_id=user_id, reason=reason))


@router.post("/{ticket_id}/refund", response_model=RefundResponse)
async def refund_ticket(
    ticket_id: int,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    key = idempotency_key or f"refund-{ticket_id}"
    bind_idempotency_key(key)
    return await services.bus.dispatch(RefundTicket(ticket_id=ticket_id, user_id=user_id, idempotency_key=key))


@router.get("/", response_model=list[TicketResponse])
async def list_my_tickets(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """All tickets of the caller, newest first. Served from cache when warm."""
    return await services.ticket_service.list_user_tickets(user_id)
