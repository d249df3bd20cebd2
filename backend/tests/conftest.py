"""
Pytest fixtures for test database, client, and authentication.

The database comes from TEST_DATABASE_URL when it is set (use PostgreSQL to
exercise real row locks); otherwise every test gets its own SQLite file.
Tables are created before and dropped after each test for isolation.
"""

import os
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import AsyncGenerator

# Must be set before the application reads its settings
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("NOTIFICATION_BACKEND", "log")

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from event_capacity.main import app
from event_capacity.core.config import get_settings
from event_capacity.core.security import create_access_token
from event_capacity.db.base import Base
from event_capacity.db.session import build_engine, build_session_factory, get_session_factory
from event_capacity.models import Booking, Event, User
from event_capacity.services.capacity_service import CapacityManager

# Generous busy timeout: the concurrency tests queue many writers on one SQLite file
TEST_LOCK_TIMEOUT_MS = 10_000


def _test_database_url(tmp_path) -> str:
    return os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables, yield the engine, then drop tables."""
    test_engine = build_engine(_test_database_url(tmp_path), lock_timeout_ms=TEST_LOCK_TIMEOUT_MS)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def manager(session_factory) -> CapacityManager:
    return CapacityManager(session_factory, settings=get_settings())


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests use the test database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_user(session_factory):
    """Factory: insert a user and return it."""
    counter = {"n": 0}

    async def _make_user(**overrides) -> User:
        counter["n"] += 1
        fields = {
            "email": f"user{counter['n']}@example.com",
            "full_name": f"Test User {counter['n']}",
            "phone": None,
            "is_active": True,
            "is_admin": False,
        }
        fields.update(overrides)
        user = User(**fields)
        async with session_factory() as session:
            async with session.begin():
                session.add(user)
        return user

    return _make_user


@pytest_asyncio.fixture
async def make_event(session_factory):
    """Factory: insert a published future event with every spot free."""
    counter = {"n": 0}

    async def _make_event(**overrides) -> Event:
        counter["n"] += 1
        capacity = overrides.pop("capacity", 100)
        fields = {
            "title": f"Test Workshop {counter['n']}",
            "slug": f"test-workshop-{counter['n']}",
            "description": "A test event",
            "price": Decimal("25.00"),
            "event_date": datetime.now(timezone.utc) + timedelta(days=30),
            "venue_name": "Test Venue",
            "venue_city": "Lisbon",
            "capacity": capacity,
            "available_spots": capacity,
            "is_published": True,
        }
        fields.update(overrides)
        event = Event(**fields)
        async with session_factory() as session:
            async with session.begin():
                session.add(event)
        return event

    return _make_event


@pytest_asyncio.fixture
async def set_available_spots(session_factory):
    """Write available_spots directly, bypassing the capacity manager."""

    async def _set(event_id: int, value: int) -> None:
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Event).where(Event.id == event_id).values(available_spots=value)
                )

    return _set


@pytest_asyncio.fixture
async def load_booking(session_factory):
    async def _load(booking_id: int) -> Booking:
        async with session_factory() as session:
            return await session.get(Booking, booking_id)

    return _load


@pytest_asyncio.fixture
async def test_user(make_user) -> User:
    return await make_user(email="test@example.com", phone="+351910000000")


@pytest_asyncio.fixture
async def other_user(make_user) -> User:
    return await make_user(email="other@example.com")


@pytest_asyncio.fixture
async def admin_user(make_user) -> User:
    return await make_user(email="admin@example.com", is_admin=True)


def _headers_for(user: User) -> dict:
    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    return _headers_for(test_user)


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return _headers_for(other_user)


@pytest_asyncio.fixture
async def admin_headers(admin_user: User) -> dict:
    return _headers_for(admin_user)


@pytest_asyncio.fixture
async def webhook_headers() -> dict:
    return {"X-Webhook-Secret": get_settings().PAYMENT_WEBHOOK_SECRET}


@pytest_asyncio.fixture
async def test_event(make_event) -> Event:
    """A published event 30 days out with 100 spots."""
    return await make_event(title="Test Concert", slug="test-concert", capacity=100)


@pytest_asyncio.fixture
async def sold_out_event(make_event) -> Event:
    return await make_event(title="Sold Out Show", slug="sold-out-show", capacity=50, available_spots=0)
