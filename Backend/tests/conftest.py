"""
Pytest configuration and fixtures for async database testing.

Every test gets its own SQLite database file, created from the ORM metadata,
so tests never share state and never need a running PostgreSQL.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SALON_TIMEZONE"] = "UTC"

from datetime import datetime, time, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from salon_booking.booking import BookingRequest
from salon_booking.core import clock
from salon_booking.core.db import build_engine, build_session_factory, get_session, init_models
from salon_booking.models import Salon, Service, TimeSlot


@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """
    Create async SQLAlchemy engine backed by a fresh database file.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'salon_test.db'}")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine):
    return build_session_factory(async_engine)


@pytest.fixture(scope="function")
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


# ────────────────────────────────────────────────────────────────
# Seed data
# ────────────────────────────────────────────────────────────────

@pytest.fixture
async def salon(async_session):
    salon = Salon(
        name="Glow Studio",
        address="12 Market Street",
        phone="+15550100",
        email="hello@glowstudio.test",
        open_time="09:00",
        close_time="18:00",
    )
    async_session.add(salon)
    await async_session.commit()
    return salon


@pytest.fixture
async def other_salon(async_session):
    salon = Salon(name="Second Salon", open_time="10:00", close_time="12:00")
    async_session.add(salon)
    await async_session.commit()
    return salon


@pytest.fixture
async def service(async_session, salon):
    service = Service(salon_id=salon.id, name="Haircut", duration_minutes=30, price_cents=150000)
    async_session.add(service)
    await async_session.commit()
    return service


@pytest.fixture
def tomorrow():
    return clock.local_today() + timedelta(days=1)


async def _add_slots(session, salon_id, slot_date, starts):
    slots = []
    for start in starts:
        end = (datetime.combine(slot_date, start) + timedelta(minutes=30)).time()
        slots.append(
            TimeSlot(salon_id=salon_id, slot_date=slot_date, start_time=start, end_time=end, is_available=True)
        )
    session.add_all(slots)
    await session.commit()
    return slots


@pytest.fixture
async def slots(async_session, salon, tomorrow):
    """Tomorrow's 09:00, 09:30 and 10:00 slots."""
    return await _add_slots(async_session, salon.id, tomorrow, [time(9, 0), time(9, 30), time(10, 0)])


@pytest.fixture
async def past_slot(async_session, salon):
    [slot] = await _add_slots(async_session, salon.id, clock.local_today() - timedelta(days=1), [time(9, 0)])
    return slot


@pytest.fixture
def make_request(salon, service):
    def _make(slot, name="Asha Rao", email="asha@example.com", phone="+15550123"):
        return BookingRequest(
            salon_id=salon.id,
            service_id=service.id,
            time_slot_id=slot.id,
            customer_name=name,
            customer_email=email,
            customer_phone=phone,
        )

    return _make


# ────────────────────────────────────────────────────────────────
# HTTP client
# ────────────────────────────────────────────────────────────────

@pytest.fixture(scope="function")
async def client(session_factory):
    """
    Create FastAPI AsyncClient bound to the per-test database.
    """
    from salon_booking.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    previous_factory = app.state.session_factory
    app.dependency_overrides[get_session] = override_get_session
    app.state.session_factory = session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.session_factory = previous_factory


@pytest.fixture
def run(session_factory):
    """Run one booking operation in its own session, the way a request does."""

    async def _run(operation, *args, **kwargs):
        async with session_factory() as session:
            return await operation(session, *args, **kwargs)

    return _run
