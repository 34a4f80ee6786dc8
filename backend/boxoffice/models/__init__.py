from boxoffice.models.event import Event, EventStatus
from boxoffice.models.ticket_type import TicketType
from boxoffice.models.ticket import Ticket, TicketStatus, LIVE_STATUSES
from boxoffice.models.idempotency import IdempotencyRecord, IdempotencyStatus

__all__ = [
    "Event", "EventStatus",
    "TicketType",
    "Ticket", "TicketStatus", "LIVE_STATUSES",
    "IdempotencyRecord", "IdempotencyStatus",
]
