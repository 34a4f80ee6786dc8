"""
Ticket lifecycle.

    reserved ──► purchased ──► refunded
        │
        └──────► cancelled

Nothing else is legal. cancelled and refunded are terminal; asking for
the state a ticket is already in (cancel a cancelled ticket, refund a
refunded one) is a no-op so retries and the sweep can overlap safely.

Transitions that change live capacity (reserved -> cancelled,
purchased -> refunded) must be made inside InventoryService.with_lock()
followed by sync_remaining().
"""

import hashlib
from datetime import datetime, timezone

from sqlalchemy import select, update

from boxoffice.services.inventory_service import InventoryService
from boxoffice.services.side_effects import SideEffects
from boxoffice.services.event_publisher import RESERVATIONS_EXPIRED
from boxoffice.services.cache_service import event_availability_pattern, user_tickets_key
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.core.exceptions import InvalidTicketTransition, LockTimeout
from boxoffice.core.metrics import tickets_swept
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    TicketStatus.RESERVED.value: {TicketStatus.PURCHASED.value, TicketStatus.CANCELLED.value},
    TicketStatus.PURCHASED.value: {TicketStatus.REFUNDED.value},
    TicketStatus.CANCELLED.value: set(),
    TicketStatus.REFUNDED.value: set(),
}

EXPIRED_REASON = "reservation_expired"


def qr_code_for(ticket: Ticket, payment_id: str) -> str:
    digest = hashlib.sha256(
        f"{ticket.id}:{ticket.ticket_type_id}:{ticket.user_id}:{payment_id}".encode()
    ).hexdigest()
    return f"QR-{ticket.id:08d}-{digest[:10].upper()}"


class TicketStateMachine:
    def __init__(self, inventory: InventoryService, side_effects: SideEffects):
        self.inventory = inventory
        self.side_effects = side_effects

    @staticmethod
    def can_transition(from_status: str, to_status: str) -> bool:
        return to_status in ALLOWED_TRANSITIONS.get(from_status, set())

    def _guard(self, ticket: Ticket, to_status: str) -> None:
        if not self.can_transition(ticket.status, to_status):
            raise InvalidTicketTransition(ticket.id, ticket.status, to_status)

    def mark_purchased(self, ticket: Ticket, payment_id: str) -> None:
        self._guard(ticket, TicketStatus.PURCHASED.value)
        ticket.status = TicketStatus.PURCHASED.value
        ticket.payment_id = payment_id
        ticket.purchased_at = datetime.now(timezone.utc)
        ticket.qr_code = qr_code_for(ticket, payment_id)

    def mark_cancelled(self, ticket: Ticket, reason: str) -> bool:
        """Returns False when the ticket was already cancelled."""
        if ticket.status == TicketStatus.CANCELLED.value:
            return False
        self._guard(ticket, TicketStatus.CANCELLED.value)
        ticket.status = TicketStatus.CANCELLED.value
        ticket.cancellation_reason = reason
        ticket.cancelled_at = datetime.now(timezone.utc)
        return True

    def mark_refunded(self, ticket: Ticket) -> bool:
        """Returns False when the ticket was already refunded."""
        if ticket.status == TicketStatus.REFUNDED.value:
            return False
        self._guard(ticket, TicketStatus.REFUNDED.value)
        ticket.status = TicketStatus.REFUNDED.value
        ticket.refunded_at = datetime.now(timezone.utc)
        return True

    async def cancel_expired_reservations(self, older_than: datetime) -> int:
        """
        Cancel reservations created before `older_than`; returns how many.

        Works one ticket type at a time under its inventory lock. A ticket
        type whose lock cannot be had is skipped until the next pass.
        """
        async with self.inventory.session_factory() as session:
            result = await session.execute(
                select(Ticket.ticket_type_id, Ticket.event_id)
                .where(
                    Ticket.status == TicketStatus.RESERVED.value,
                    Ticket.created_at < older_than,
                )
                .distinct()
            )
            targets = result.all()

        total = 0
        for ticket_type_id, event_id in targets:

            async def _expire(session, ticket_type):
                rows = await session.execute(
                    select(Ticket.id, Ticket.user_id).where(
                        Ticket.ticket_type_id == ticket_type.id,
                        Ticket.status == TicketStatus.RESERVED.value,
                        Ticket.created_at < older_than,
                    )
                )
                expired = rows.all()
                if not expired:
                    return [], []

                # reserved -> cancelled, the only transition the WHERE clause admits
                await session.execute(
                    update(Ticket)
                    .where(
                        Ticket.id.in_([row.id for row in expired]),
                        Ticket.status == TicketStatus.RESERVED.value,
                    )
                    .values(
                        status=TicketStatus.CANCELLED.value,
                        cancellation_reason=EXPIRED_REASON,
                        cancelled_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                await self.inventory.sync_remaining(session, ticket_type)
                return [row.id for row in expired], sorted({row.user_id for row in expired})

            try:
                ticket_ids, user_ids = await self.inventory.with_lock(ticket_type_id, _expire)
            except LockTimeout:
                logger.warning("reservation_sweep_lock_busy", ticket_type_id=ticket_type_id)
                continue

            if not ticket_ids:
                continue

            total += len(ticket_ids)
            logger.info(
                "reservations_expired",
                ticket_type_id=ticket_type_id,
                count=len(ticket_ids),
            )
            await self.side_effects.emit(
                RESERVATIONS_EXPIRED,
                {"event_id": event_id, "ticket_type_id": ticket_type_id, "ticket_ids": ticket_ids},
                invalidate=[event_availability_pattern(event_id), *(user_tickets_key(u) for u in user_ids)],
            )

        if total:
            tickets_swept.inc(total)
        return total
