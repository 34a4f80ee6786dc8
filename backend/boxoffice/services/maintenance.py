"""
Background maintenance loop.

Each pass:
  - cancels reservations older than RESERVATION_TIMEOUT_MINUTES
  - fails ledger rows stuck in PROCESSING for IDEMPOTENCY_STALE_AFTER_MINUTES
  - purges finished ledger rows older than IDEMPOTENCY_RETENTION_DAYS
  - reconciles every ticket type's counter with its live count

Started from the application lifespan; one failing pass is logged and
the loop carries on.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from boxoffice.services.ticket_state_machine import TicketStateMachine
from boxoffice.services.inventory_service import InventoryService
from boxoffice.services.idempotency_service import IdempotencyService
from boxoffice.core.config import Settings
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


class MaintenanceRunner:
    def __init__(
        self,
        tickets: TicketStateMachine,
        inventory: InventoryService,
        ledger: IdempotencyService,
        settings: Settings,
    ):
        self.tickets = tickets
        self.inventory = inventory
        self.ledger = ledger
        self.reservation_timeout = timedelta(minutes=settings.RESERVATION_TIMEOUT_MINUTES)
        self.stale_after = timedelta(minutes=settings.IDEMPOTENCY_STALE_AFTER_MINUTES)
        self.retention = timedelta(days=settings.IDEMPOTENCY_RETENTION_DAYS)
        self.interval = settings.SWEEP_INTERVAL_SECONDS
        self._task: Optional[asyncio.Task] = None

    async def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return await self.tickets.cancel_expired_reservations(now - self.reservation_timeout)

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        report = {
            "expired_reservations": await self.sweep(now),
            "stale_ledger_records": await self.ledger.fail_stale(now - self.stale_after),
            "purged_ledger_records": await self.ledger.purge(now - self.retention),
            "drifted_ticket_types": len(await self.inventory.reconcile_all()),
        }
        logger.info("maintenance_pass_completed", **report)
        return report

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("maintenance_pass_failed")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
            logger.info("maintenance_started", interval_seconds=self.interval)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("maintenance_stopped")
