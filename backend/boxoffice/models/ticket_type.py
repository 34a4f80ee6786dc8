"""
TicketType model: the unit of inventory.

Key design decisions:
- `quantity` is total capacity and never changes during sales
- `remaining_quantity` is a denormalized read-path counter. The canonical
  availability is `quantity - count(tickets in reserved/purchased)`; the
  counter is only written inside the inventory lock, right after that count,
  and is periodically reconciled against it
- The row itself is what the `row` lock backend locks (SELECT ... FOR UPDATE)
"""

from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint

from boxoffice.db.base import Base, TimestampMixin


class TicketType(Base, TimestampMixin):
    __tablename__ = "ticket_types"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Integer, nullable=False)  # minor units (cents)
    currency = Column(String(3), nullable=False, default="USD")
    quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_ticket_type_quantity_positive"),
        CheckConstraint("price >= 0", name="check_ticket_type_price_non_negative"),
        CheckConstraint("remaining_quantity >= 0", name="check_remaining_non_negative"),
        CheckConstraint("remaining_quantity <= quantity", name="check_remaining_lte_quantity"),
    )

    def __repr__(self) -> str:
        return (
            f"<TicketType(id={self.id}, event={self.event_id}, "
            f"remaining={self.remaining_quantity}/{self.quantity})>"
        )
