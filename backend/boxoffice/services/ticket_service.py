"""
Cancel, refund and list a user's tickets.

Both mutations return capacity to the pool, so they run under the
ticket type's inventory lock and resync the counter in the same
transaction. Refunds go through the payment gateway first and are
recorded in the idempotency ledger under one row per ticket; a ticket
someone else owns is reported as not found.
"""

import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.services.commands import CancelTicket, RefundTicket, CommandType
from boxoffice.services.idempotency_service import IdempotencyService, CachedResult
from boxoffice.services.inventory_service import InventoryService
from boxoffice.services.ticket_state_machine import TicketStateMachine
from boxoffice.services.side_effects import SideEffects
from boxoffice.services.interfaces.payment import PaymentGateway
from boxoffice.services.cache_service import CacheService, event_availability_pattern, user_tickets_key
from boxoffice.services.event_publisher import TICKET_CANCELLED, TICKET_REFUNDED
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.models.ticket_type import TicketType
from boxoffice.models.idempotency import IdempotencyRecord
from boxoffice.core.exceptions import DomainError, NotFoundError, PaymentError, InvalidTicketTransition
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

# Ledger result status: money returned, ticket transition still pending
REFUND_ISSUED = "refund_issued"


def refund_ledger_key(ticket_id: int) -> str:
    return f"refund-{ticket_id}"


def serialize_ticket(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "event_id": ticket.event_id,
        "ticket_type_id": ticket.ticket_type_id,
        "price": ticket.price,
        "status": ticket.status,
        "qr_code": ticket.qr_code,
        "purchased_at": ticket.purchased_at.isoformat() if ticket.purchased_at else None,
        "cancelled_at": ticket.cancelled_at.isoformat() if ticket.cancelled_at else None,
        "refunded_at": ticket.refunded_at.isoformat() if ticket.refunded_at else None,
    }


class TicketService:
    def __init__(
        self,
        ledger: IdempotencyService,
        inventory: InventoryService,
        tickets: TicketStateMachine,
        payments: PaymentGateway,
        side_effects: SideEffects,
        cache: Optional[CacheService] = None,
        payment_timeout: float = 10.0,
    ):
        self.ledger = ledger
        self.inventory = inventory
        self.tickets = tickets
        self.payments = payments
        self.side_effects = side_effects
        self.cache = cache
        self.payment_timeout = payment_timeout

    async def list_user_tickets(self, user_id: int) -> list[dict]:
        async def _produce() -> list[dict]:
            async with self.inventory.session_factory() as session:
                result = await session.execute(
                    select(Ticket).where(Ticket.user_id == user_id).order_by(Ticket.id.desc())
                )
                return [serialize_ticket(t) for t in result.scalars().all()]

        if self.cache is None:
            return await _produce()
        return await self.cache.get(user_tickets_key(user_id), _produce)

    async def cancel_ticket(self, command: CancelTicket) -> dict:
        ticket = await self._owned_ticket(command.ticket_id, command.user_id)

        async def _cancel(session: AsyncSession, ticket_type: TicketType) -> tuple[bool, dict]:
            locked = await session.get(Ticket, ticket.id)
            changed = self.tickets.mark_cancelled(locked, command.reason)
            await self.inventory.sync_remaining(session, ticket_type)
            return changed, serialize_ticket(locked)

        changed, snapshot = await self.inventory.with_lock(ticket.ticket_type_id, _cancel)
        if changed:
            logger.info("ticket_cancelled", ticket_id=ticket.id, reason=command.reason)
            await self.side_effects.emit(
                TICKET_CANCELLED,
                {"ticket_id": ticket.id, "event_id": ticket.event_id, "user_id": command.user_id, "reason": command.reason},
                invalidate=[event_availability_pattern(ticket.event_id), user_tickets_key(command.user_id)],
            )
        return snapshot

    async def refund_ticket(self, command: RefundTicket) -> dict:
        """
        Refund the caller's purchased ticket.

        The ledger row is keyed on the ticket, not the client key, so two
        requests for one ticket never both reach the gateway. Once the
        gateway has paid out, the row is completed as "refund_issued"
        even if the ticket update fails; a later request only applies
        the ticket transition.
        """
        ticket = await self._owned_ticket(command.ticket_id, command.user_id)
        outcome = await self.ledger.begin(refund_ledger_key(ticket.id), CommandType.REFUND_TICKET.value)
        if isinstance(outcome, CachedResult):
            if outcome.result.get("status") == REFUND_ISSUED:
                return await self._apply_refund(ticket, outcome.result["refund_id"], command)
            return outcome.result
        record = outcome.record

        try:
            if ticket.status == TicketStatus.REFUNDED.value:
                result = {"ticket_id": ticket.id, "status": ticket.status}
                await self.ledger.complete(record, result)
                return result
            if ticket.status != TicketStatus.PURCHASED.value:
                raise InvalidTicketTransition(ticket.id, ticket.status, TicketStatus.REFUNDED.value)

            try:
                refund = await asyncio.wait_for(
                    self.payments.refund_payment(ticket.payment_id, ticket.price),
                    timeout=self.payment_timeout,
                )
            except Exception as exc:
                logger.error("refund_gateway_error", ticket_id=ticket.id, error=repr(exc))
                raise PaymentError(f"Refund failed: {exc}") from exc
            if not refund.success:
                raise PaymentError(refund.message or "Refund declined")
        except DomainError as exc:
            await self.ledger.fail(record, exc.message)
            raise

        try:
            return await self._apply_refund(ticket, refund.payment_id, command, record)
        except Exception as exc:
            logger.error(
                "refund_issued_ticket_not_updated",
                ticket_id=ticket.id,
                refund_id=refund.payment_id,
                error=repr(exc),
            )
            await self.ledger.complete(
                record,
                {"ticket_id": ticket.id, "status": REFUND_ISSUED, "refund_id": refund.payment_id},
            )
            raise

    async def _apply_refund(
        self,
        ticket: Ticket,
        refund_id: str,
        command: RefundTicket,
        record: Optional[IdempotencyRecord] = None,
    ) -> dict:
        async def _refund(session: AsyncSession, ticket_type: TicketType) -> tuple[bool, dict]:
            locked = await session.get(Ticket, ticket.id)
            changed = self.tickets.mark_refunded(locked)
            await self.inventory.sync_remaining(session, ticket_type)
            result = {"ticket_id": locked.id, "status": locked.status, "refund_id": refund_id}
            if record is not None:
                await self.ledger.complete(record, result, session=session)
            return changed, result

        changed, result = await self.inventory.with_lock(ticket.ticket_type_id, _refund)
        if changed:
            logger.info(
                "ticket_refunded",
                ticket_id=ticket.id,
                refund_id=refund_id,
                client_key=command.idempotency_key,
            )
            await self.side_effects.emit(
                TICKET_REFUNDED,
                {"ticket_id": ticket.id, "event_id": ticket.event_id, "user_id": command.user_id, "amount": ticket.price},
                invalidate=[event_availability_pattern(ticket.event_id), user_tickets_key(command.user_id)],
            )
        return result

    async def _owned_ticket(self, ticket_id: int, user_id: int) -> Ticket:
        async with self.inventory.session_factory() as session:
            ticket = await session.get(Ticket, ticket_id)
        if ticket is None or ticket.user_id != user_id:
            raise NotFoundError("Ticket", ticket_id)
        return ticket
