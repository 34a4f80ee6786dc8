"""
Pytest fixtures for test database, services, and HTTP client.

Each test gets its own SQLite file database, the in-process inventory
lock and in-memory stand-ins for Redis and the event bus, so the full
purchase saga runs without external services.
"""

from datetime import datetime, timezone, timedelta
from fnmatch import fnmatch
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.main import app
from boxoffice.api.deps import get_services
from boxoffice.bootstrap import Services, build_services
from boxoffice.core.config import Settings
from boxoffice.core.exceptions import InfrastructureError
from boxoffice.db.base import Base
from boxoffice.db.session import create_engine, create_session_factory
from boxoffice.models import Event, EventStatus, TicketType, Ticket, TicketStatus
from boxoffice.services.interfaces.notifier import EventPublisher
from boxoffice.services.payment_service import SimulatedPaymentGateway


class RecordingRedis:
    """In-memory stand-in for the redis.asyncio calls CacheService makes."""

    def __init__(self, fail: bool = False):
        self.store: dict[str, str] = {}
        self.deleted: list[str] = []
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisError("Connection refused")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value

    async def delete(self, key):
        self._check()
        self.deleted.append(key)
        return int(self.store.pop(key, None) is not None)

    async def scan_iter(self, match=None, count=None):
        self._check()
        for key in [k for k in self.store if match is None or fnmatch(k, match)]:
            yield key

    async def info(self, section=None):
        self._check()
        return {"keyspace_hits": 0, "keyspace_misses": 0}


class RecordingPublisher(EventPublisher):
    def __init__(self, fail: bool = False):
        self.published: list[tuple[str, dict]] = []
        self.fail = fail

    async def publish(self, topic: str, payload: dict) -> None:
        if self.fail:
            raise InfrastructureError("Event bus unavailable")
        self.published.append((topic, payload))

    @property
    def topics(self) -> list[str]:
        return [topic for topic, _ in self.published]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'boxoffice.db'}",
        REDIS_ENABLED=False,
        INVENTORY_LOCK_BACKEND="local",
        LOCK_TIMEOUT_SECONDS=5.0,
        PAYMENT_TIMEOUT_SECONDS=0.5,
        PAYMENT_SIMULATED_LATENCY=0.0,
        MAINTENANCE_ENABLED=False,
    )


@pytest_asyncio.fixture(scope="function")
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create tables in a throwaway database, yield a session factory, dispose."""
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def redis_client() -> RecordingRedis:
    return RecordingRedis()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def payments(settings: Settings) -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway(
        supported_currencies=settings.SUPPORTED_CURRENCIES,
        min_amount=settings.MIN_PAYMENT_AMOUNT,
        max_amount=settings.MAX_PAYMENT_AMOUNT,
        latency=0.0,
        success_rate=1.0,
    )


@pytest.fixture
def services(settings, session_factory, redis_client, publisher, payments) -> Services:
    return build_services(
        settings,
        session_factory,
        redis_client=redis_client,
        payments=payments,
        publisher=publisher,
    )


@pytest_asyncio.fixture(scope="function")
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test service graph."""
    app.dependency_overrides[get_services] = lambda: services
    app.state.services = services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.services


@pytest_asyncio.fixture
async def event(session_factory) -> Event:
    """A published event."""
    async with session_factory() as session:
        event = Event(
            title="Test Concert",
            date=datetime.now(timezone.utc) + timedelta(days=30),
            location="Test Venue",
            status=EventStatus.PUBLISHED.value,
        )
        session.add(event)
        await session.commit()
        return event


@pytest.fixture
def make_ticket_type(session_factory, event):
    async def _make(quantity: int = 10, price: int = 5000, currency: str = "USD", event_id: Optional[int] = None):
        async with session_factory() as session:
            ticket_type = TicketType(
                event_id=event_id or event.id,
                name="General Admission",
                price=price,
                currency=currency,
                quantity=quantity,
                remaining_quantity=quantity,
            )
            session.add(ticket_type)
            await session.commit()
            return ticket_type

    return _make


@pytest_asyncio.fixture
async def ticket_type(make_ticket_type) -> TicketType:
    """10 tickets at 50.00 USD."""
    return await make_ticket_type()


@pytest.fixture
def reserve_ticket(services: Services):
    """Insert a reserved ticket the way the saga does, optionally backdated."""

    async def _reserve(ticket_type: TicketType, user_id: int = 1, created_at: Optional[datetime] = None):
        async def _insert(session, locked_type):
            ticket = Ticket(
                event_id=locked_type.event_id,
                ticket_type_id=locked_type.id,
                user_id=user_id,
                price=locked_type.price,
                status=TicketStatus.RESERVED.value,
                created_at=created_at or datetime.now(timezone.utc),
            )
            session.add(ticket)
            await session.flush()
            await services.inventory.sync_remaining(session, locked_type)
            return ticket

        return await services.inventory.with_lock(ticket_type.id, _insert)

    return _reserve


@pytest.fixture
def load(session_factory):
    """Fresh read of one row by primary key."""

    async def _load(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _load
