"""
Ticket model.

Key design decisions:
- Rows are never deleted; cancelled and refunded are terminal statuses,
  which keeps the audit trail and lets availability be a simple count
- `price` is captured from the ticket type at reservation time
- (ticket_type_id, status) index keeps the live count under lock cheap
- (status, created_at) index serves the expired-reservation sweep
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, CheckConstraint

from boxoffice.db.base import Base, TimestampMixin


class TicketStatus(str, enum.Enum):
    RESERVED = "reserved"
    PURCHASED = "purchased"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Statuses that hold capacity
LIVE_STATUSES = (TicketStatus.RESERVED.value, TicketStatus.PURCHASED.value)


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    ticket_type_id = Column(Integer, ForeignKey("ticket_types.id"), nullable=False)
    user_id = Column(Integer, nullable=False, index=True)
    price = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=TicketStatus.RESERVED.value)
    payment_id = Column(String(100), nullable=True)
    qr_code = Column(String(64), nullable=True, unique=True)
    purchased_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_ticket_price_non_negative"),
        CheckConstraint(
            "status IN ('reserved', 'purchased', 'cancelled', 'refunded')",
            name="check_ticket_status",
        ),
        Index("ix_tickets_type_status", "ticket_type_id", "status"),
        Index("ix_tickets_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(id={self.id}, type={self.ticket_type_id}, user={self.user_id}, status={self.status})>"
