"""
Purchase saga.

FLOW
====

  1. ledger.begin(key, "PurchaseTickets")
       in flight  -> CommandAlreadyProcessing, nothing else runs
       completed  -> stored result returned verbatim, nothing else runs
  2. inventory lock held:
       event published? ticket type belongs to event? enough remaining?
  3.   insert `quantity` reserved tickets, resync counter, COMMIT, release lock
  4. charge the payment gateway (no lock held, bounded by PAYMENT_TIMEOUT_SECONDS)
  5. success: lock, reserved -> purchased, ledger.complete in the same COMMIT
  6. failure/timeout/error: lock, reserved -> cancelled, ledger.fail in the
     same COMMIT, then PaymentError

Rejections in step 2 fail the ledger record before surfacing, so the
client may retry with the same key.

Compensation cannot always run: if step 6 fails (lock timeout, database
error) the ledger is still failed and the reserved tickets are left to the
expiry sweep. If step 5 fails after the charge went through, the charge is
refunded and the ledger failed before the error surfaces.

The sweep can also win a race against a slow payment: when step 5 finds
a ticket already cancelled, the charge is refunded and the remaining
reservations are cancelled.

Side effects (cache invalidation, event publication) run only after the
deciding COMMIT and never change the outcome.

The saga body runs as its own task behind asyncio.shield(): a client
that disconnects mid-payment cancels its wait, not the saga.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boxoffice.services.commands import PurchaseTickets, CommandType
from boxoffice.services.idempotency_service import IdempotencyService, CachedResult
from boxoffice.services.inventory_service import InventoryService
from boxoffice.services.ticket_state_machine import TicketStateMachine
from boxoffice.services.side_effects import SideEffects
from boxoffice.services.interfaces.payment import PaymentGateway, PaymentResult
from boxoffice.services.event_publisher import TICKETS_PURCHASED, TICKETS_PURCHASE_FAILED
from boxoffice.services.cache_service import event_availability_pattern, user_tickets_key
from boxoffice.models.event import Event
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.models.ticket_type import TicketType
from boxoffice.models.idempotency import IdempotencyRecord
from boxoffice.core.exceptions import (
    DomainError,
    ValidationError,
    NotFoundError,
    CommandAlreadyProcessing,
    InsufficientAvailability,
    PaymentError,
    LockTimeout,
)
from boxoffice.core.metrics import (
    record_purchase,
    purchase_latency,
    compensations,
    active_reservations,
)
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

COMMAND_TYPE = CommandType.PURCHASE_TICKETS.value

OUTCOMES = {
    CommandAlreadyProcessing: "conflict",
    InsufficientAvailability: "sold_out",
    PaymentError: "payment_failed",
    LockTimeout: "lock_timeout",
    NotFoundError: "rejected",
    ValidationError: "rejected",
}


@dataclass(frozen=True)
class Reservation:
    ticket_ids: list[int]
    event_id: int
    ticket_type_id: int
    amount: int
    currency: str


class PurchaseOrchestrator:
    def __init__(
        self,
        ledger: IdempotencyService,
        inventory: InventoryService,
        tickets: TicketStateMachine,
        payments: PaymentGateway,
        side_effects: SideEffects,
        payment_timeout: float = 10.0,
        max_tickets_per_purchase: int = 10,
    ):
        self.ledger = ledger
        self.inventory = inventory
        self.tickets = tickets
        self.payments = payments
        self.side_effects = side_effects
        self.payment_timeout = payment_timeout
        self.max_tickets_per_purchase = max_tickets_per_purchase
        self._in_flight: set[asyncio.Task] = set()

    async def purchase(self, command: PurchaseTickets) -> dict:
        self._validate(command)

        task = asyncio.ensure_future(self._run(command))
        self._in_flight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for sagas still running after their callers went away."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    def _forget(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if not task.cancelled():
            # Retrieved here so an abandoned saga's error is not reported as unhandled
            task.exception()

    def _validate(self, command: PurchaseTickets) -> None:
        if not 1 <= command.quantity <= self.max_tickets_per_purchase:
            raise ValidationError(
                f"Quantity must be between 1 and {self.max_tickets_per_purchase}"
            )
        if command.event_id <= 0 or command.ticket_type_id <= 0:
            raise ValidationError("event_id and ticket_type_id must be positive")
        if not command.idempotency_key or not command.idempotency_key.strip():
            raise ValidationError("Idempotency key is required")
        if len(command.idempotency_key) > 255:
            raise ValidationError("Idempotency key must be at most 255 characters")
        if not command.payment_method_id or not command.payment_method_id.strip():
            raise ValidationError("Payment method is required")

    async def _run(self, command: PurchaseTickets) -> dict:
        started = time.perf_counter()
        try:
            result = await self._execute(command)
        except DomainError as exc:
            record_purchase(OUTCOMES.get(type(exc), "error"))
            raise
        except Exception:
            record_purchase("error")
            raise
        finally:
            purchase_latency.observe(time.perf_counter() - started)
        return result

    async def _execute(self, command: PurchaseTickets) -> dict:
        outcome = await self.ledger.begin(command.idempotency_key, COMMAND_TYPE)
        if isinstance(outcome, CachedResult):
            record_purchase("replayed")
            return outcome.result
        record = outcome.record

        logger.info(
            "purchase_started",
            event_id=command.event_id,
            ticket_type_id=command.ticket_type_id,
            quantity=command.quantity,
            user_id=command.user_id,
        )

        try:
            reservation = await self.inventory.with_lock(
                command.ticket_type_id,
                lambda session, ticket_type: self._reserve(session, ticket_type, command),
            )
        except DomainError as exc:
            await self.ledger.fail(record, exc.message)
            raise
        except Exception as exc:
            await self.ledger.fail(record, f"Reservation failed: {exc}")
            raise

        logger.info(
            "tickets_reserved",
            ticket_ids=reservation.ticket_ids,
            amount=reservation.amount,
            currency=reservation.currency,
        )

        active_reservations.inc()
        try:
            payment, failure = await self._charge(command, reservation)
        finally:
            active_reservations.dec()

        if failure is not None:
            reason, message = failure
            await self._compensate(command, record, reservation, reason, message)
            raise PaymentError(message)

        return await self._confirm(command, record, reservation, payment)

    async def _reserve(
        self,
        session: AsyncSession,
        ticket_type: TicketType,
        command: PurchaseTickets,
    ) -> Reservation:
        if ticket_type.event_id != command.event_id:
            raise NotFoundError("Ticket type", command.ticket_type_id)

        event = await session.get(Event, command.event_id)
        if event is None:
            raise NotFoundError("Event", command.event_id)
        if not event.is_published:
            raise ValidationError(f"Event {event.id} is not on sale")

        availability = await self.inventory.check_availability(session, ticket_type.id, command.quantity)
        if not availability.available:
            logger.warning(
                "purchase_rejected_insufficient_availability",
                ticket_type_id=ticket_type.id,
                requested=command.quantity,
                remaining=availability.remaining,
            )
            raise InsufficientAvailability(ticket_type.id, command.quantity, availability.remaining)

        now = datetime.now(timezone.utc)
        tickets = [
            Ticket(
                event_id=command.event_id,
                ticket_type_id=ticket_type.id,
                user_id=command.user_id,
                price=ticket_type.price,
                status=TicketStatus.RESERVED.value,
                created_at=now,
            )
            for _ in range(command.quantity)
        ]
        session.add_all(tickets)
        await session.flush()
        await self.inventory.sync_remaining(session, ticket_type)

        return Reservation(
            ticket_ids=[t.id for t in tickets],
            event_id=command.event_id,
            ticket_type_id=ticket_type.id,
            amount=sum(t.price for t in tickets),
            currency=ticket_type.currency,
        )

    async def _charge(
        self, command: PurchaseTickets, reservation: Reservation
    ) -> tuple[Optional[PaymentResult], Optional[tuple[str, str]]]:
        """Returns (result, None) on success or (None, (reason, message)) on any failure."""
        try:
            result = await asyncio.wait_for(
                self.payments.process_payment(
                    command.payment_method_id,
                    reservation.amount,
                    reservation.currency,
                    metadata={
                        "idempotency_key": command.idempotency_key,
                        "event_id": command.event_id,
                        "ticket_ids": reservation.ticket_ids,
                        "user_id": command.user_id,
                    },
                ),
                timeout=self.payment_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("payment_timed_out", timeout=self.payment_timeout)
            return None, ("timeout", f"Payment gateway did not respond within {self.payment_timeout:g}s")
        except Exception as exc:
            logger.error("payment_gateway_error", error=repr(exc))
            return None, ("gateway_error", f"Payment processing error: {exc}")

        if not result.success:
            logger.warning("payment_declined", message=result.message)
            return None, ("declined", result.message or "Payment declined")
        return result, None

    async def _compensate(
        self,
        command: PurchaseTickets,
        record: IdempotencyRecord,
        reservation: Reservation,
        reason: str,
        message: str,
    ) -> None:
        async def _release(session: AsyncSession, ticket_type: TicketType) -> None:
            for ticket in await self._load(session, reservation.ticket_ids):
                self.tickets.mark_cancelled(ticket, f"payment_{reason}")
            await self.inventory.sync_remaining(session, ticket_type)
            await self.ledger.fail(record, message, session=session)

        try:
            await self.inventory.with_lock(reservation.ticket_type_id, _release)
        except Exception as exc:
            logger.error(
                "compensation_deferred_to_sweep",
                ticket_ids=reservation.ticket_ids,
                reason=reason,
                error=repr(exc),
            )
            await self.ledger.fail(record, message)
            return

        compensations.labels(reason=reason).inc()
        logger.info("purchase_compensated", ticket_ids=reservation.ticket_ids, reason=reason)
        await self.side_effects.emit(
            TICKETS_PURCHASE_FAILED,
            {
                "event_id": reservation.event_id,
                "ticket_type_id": reservation.ticket_type_id,
                "ticket_ids": reservation.ticket_ids,
                "user_id": command.user_id,
                "reason": reason,
            },
            invalidate=[event_availability_pattern(reservation.event_id), user_tickets_key(command.user_id)],
        )

    async def _confirm(
        self,
        command: PurchaseTickets,
        record: IdempotencyRecord,
        reservation: Reservation,
        payment: PaymentResult,
    ) -> dict:
        lost_message = "Reservation expired before payment completed; payment refunded"

        async def _finalize(session: AsyncSession, ticket_type: TicketType) -> Optional[dict]:
            tickets = await self._load(session, reservation.ticket_ids)
            if any(t.status != TicketStatus.RESERVED.value for t in tickets):
                for ticket in tickets:
                    self.tickets.mark_cancelled(ticket, "reservation_expired")
                await self.inventory.sync_remaining(session, ticket_type)
                await self.ledger.fail(record, lost_message, session=session)
                return None

            for ticket in tickets:
                self.tickets.mark_purchased(ticket, payment.payment_id)
            result = {"ticket_ids": reservation.ticket_ids, "status": TicketStatus.PURCHASED.value}
            await self.ledger.complete(record, result, session=session)
            return result

        try:
            result = await self.inventory.with_lock(reservation.ticket_type_id, _finalize)
        except Exception as exc:
            # Charged but cannot confirm: give the money back, the sweep reclaims the tickets
            logger.error("purchase_confirm_failed", ticket_ids=reservation.ticket_ids, error=repr(exc))
            await self._refund(payment, reservation)
            await self.ledger.fail(record, "Could not confirm reservation; payment refunded")
            raise

        if result is None:
            logger.warning("reservation_lost_during_payment", ticket_ids=reservation.ticket_ids)
            await self._refund(payment, reservation)
            compensations.labels(reason="reservation_expired").inc()
            await self.side_effects.emit(
                TICKETS_PURCHASE_FAILED,
                {
                    "event_id": reservation.event_id,
                    "ticket_type_id": reservation.ticket_type_id,
                    "ticket_ids": reservation.ticket_ids,
                    "user_id": command.user_id,
                    "reason": "reservation_expired",
                },
                invalidate=[event_availability_pattern(reservation.event_id), user_tickets_key(command.user_id)],
            )
            raise PaymentError(lost_message)

        record_purchase("purchased")
        logger.info(
            "purchase_completed",
            ticket_ids=reservation.ticket_ids,
            payment_id=payment.payment_id,
        )
        await self.side_effects.emit(
            TICKETS_PURCHASED,
            {
                "event_id": reservation.event_id,
                "ticket_type_id": reservation.ticket_type_id,
                "ticket_ids": reservation.ticket_ids,
                "user_id": command.user_id,
                "amount": reservation.amount,
                "currency": reservation.currency,
                "payment_id": payment.payment_id,
            },
            invalidate=[event_availability_pattern(reservation.event_id), user_tickets_key(command.user_id)],
        )
        return result

    async def _refund(self, payment: PaymentResult, reservation: Reservation) -> None:
        try:
            refund = await asyncio.wait_for(
                self.payments.refund_payment(payment.payment_id, reservation.amount),
                timeout=self.payment_timeout,
            )
        except Exception as exc:
            logger.error(
                "refund_after_lost_reservation_failed",
                payment_id=payment.payment_id,
                amount=reservation.amount,
                error=repr(exc),
            )
            return
        if not refund.success:
            logger.error(
                "refund_after_lost_reservation_declined",
                payment_id=payment.payment_id,
                message=refund.message,
            )

    @staticmethod
    async def _load(session: AsyncSession, ticket_ids: list[int]) -> list[Ticket]:
        result = await session.execute(
            select(Ticket).where(Ticket.id.in_(ticket_ids)).order_by(Ticket.id)
        )
        return list(result.scalars().all())
