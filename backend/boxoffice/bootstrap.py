"""
Wires the service graph.

Everything the API and the maintenance loop use is built once here from
Settings plus the live connections (database session factory, optional
Redis client, optional HTTP client for the payment gateway). Tests build
the same graph against SQLite with their own doubles swapped in.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.core.config import Settings
from boxoffice.services.cache_service import CacheService
from boxoffice.services.commands import CommandBus, CommandType
from boxoffice.services.event_publisher import get_event_publisher
from boxoffice.services.idempotency_service import IdempotencyService
from boxoffice.services.interfaces.inventory_lock import InventoryLock
from boxoffice.services.interfaces.notifier import EventPublisher
from boxoffice.services.interfaces.payment import PaymentGateway
from boxoffice.services.inventory_service import InventoryService
from boxoffice.services.maintenance import MaintenanceRunner
from boxoffice.services.payment_service import get_payment_gateway
from boxoffice.services.purchase_orchestrator import PurchaseOrchestrator
from boxoffice.services.side_effects import SideEffects
from boxoffice.services.strategy_factory import get_inventory_lock
from boxoffice.services.ticket_service import TicketService
from boxoffice.services.ticket_state_machine import TicketStateMachine


@dataclass
class Services:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    cache: CacheService
    publisher: EventPublisher
    payments: PaymentGateway
    ledger: IdempotencyService
    inventory: InventoryService
    tickets: TicketStateMachine
    orchestrator: PurchaseOrchestrator
    ticket_service: TicketService
    bus: CommandBus
    maintenance: MaintenanceRunner


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Optional[redis.Redis] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    payments: Optional[PaymentGateway] = None,
    publisher: Optional[EventPublisher] = None,
    lock: Optional[InventoryLock] = None,
) -> Services:
    cache = CacheService(redis_client, default_ttl=settings.REDIS_CACHE_TTL)
    publisher = publisher or get_event_publisher(settings, redis_client)
    payments = payments or get_payment_gateway(settings, http_client)
    lock = lock or get_inventory_lock(settings, redis_client)

    side_effects = SideEffects(cache, publisher)
    ledger = IdempotencyService(session_factory)
    inventory = InventoryService(session_factory, lock, cache, cache_ttl=settings.REDIS_CACHE_TTL)
    tickets = TicketStateMachine(inventory, side_effects)

    orchestrator = PurchaseOrchestrator(
        ledger,
        inventory,
        tickets,
        payments,
        side_effects,
        payment_timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        max_tickets_per_purchase=settings.MAX_TICKETS_PER_PURCHASE,
    )
    ticket_service = TicketService(
        ledger,
        inventory,
        tickets,
        payments,
        side_effects,
        cache=cache,
        payment_timeout=settings.PAYMENT_TIMEOUT_SECONDS,
    )
    bus = CommandBus(
        {
            CommandType.PURCHASE_TICKETS: orchestrator.purchase,
            CommandType.CANCEL_TICKET: ticket_service.cancel_ticket,
            CommandType.REFUND_TICKET: ticket_service.refund_ticket,
        }
    )

    return Services(
        settings=settings,
        session_factory=session_factory,
        cache=cache,
        publisher=publisher,
        payments=payments,
        ledger=ledger,
        inventory=inventory,
        tickets=tickets,
        orchestrator=orchestrator,
        ticket_service=ticket_service,
        bus=bus,
        maintenance=MaintenanceRunner(tickets, inventory, ledger, settings),
    )
