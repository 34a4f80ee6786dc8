"""
Event model.

Only the fields the purchase path needs: existence, publication status and
date. Ticket types and tickets refer to an event by id; there are no ORM
back-references, aggregates are loaded by key.
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint

from boxoffice.db.base import Base, TimestampMixin


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    location = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=EventStatus.DRAFT.value)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'cancelled')", name="check_event_status"
        ),
        Index("ix_events_date", "date"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == EventStatus.PUBLISHED.value

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, status={self.status})>"
