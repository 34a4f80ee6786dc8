"""
Pydantic schemas for the purchase endpoint.
"""

from typing import Optional

from pydantic import BaseModel, Field


class PurchaseRequest(BaseModel):
    event_id: int = Field(gt=0)
    ticket_type_id: int = Field(gt=0)
    # Upper bound is MAX_TICKETS_PER_PURCHASE, checked by the orchestrator
    quantity: int = Field(gt=0)
    payment_method_id: str = Field(min_length=1, max_length=255)
    idempotency_key: Optional[str] = Field(default=None, min_length=1, max_length=255)


class PurchaseResponse(BaseModel):
    ticket_ids: list[int]
    status: str
