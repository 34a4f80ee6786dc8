"""
Pydantic schemas for ticket, availability and admin responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class TicketResponse(BaseModel):
    id: int
    event_id: int
    ticket_type_id: int
    price: int
    status: str
    qr_code: Optional[str] = None
    purchased_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class CancelTicketRequest(BaseModel):
    reason: str = Field(default="cancelled_by_user", min_length=1, max_length=255)


class RefundResponse(BaseModel):
    ticket_id: int
    status: str
    refund_id: Optional[str] = None


class AvailabilityResponse(BaseModel):
    event_id: int
    ticket_type_id: int
    name: str
    price: int
    currency: str
    quantity: int
    remaining: int
    available: bool


class SweepResponse(BaseModel):
    expired_reservations: int


class ReconcileResponse(BaseModel):
    ticket_type_id: int
    event_id: int
    previous: int
    remaining: int
    drift: int
