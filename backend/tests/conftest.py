"""
Pytest fixtures for the test database, booking coordinator and HTTP client.

Each test gets its own throwaway SQLite file, so coordinator transactions run
on real, separate connections exactly as they would against PostgreSQL.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

# Must be set before slotbook reads its settings
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("RECLAIM_INTERVAL_SECONDS", "0")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from slotbook.main import app
from slotbook.db.base import Base
from slotbook.models import Booking, Doctor, Slot
from slotbook.models.booking import HOLDING_STATUSES
from slotbook.services.booking_service import BookingCoordinator


class FakeClock:
    """Controllable replacement for utcnow()."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'slotbook_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(session_factory, clock) -> BookingCoordinator:
    return BookingCoordinator(
        session_factory,
        lock_timeout=5.0,
        hold_window=timedelta(minutes=2),
        clock=clock,
    )


@pytest_asyncio.fixture
async def client(session_factory, coordinator) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the per-test database."""
    app.state.session_factory = session_factory
    app.state.coordinator = coordinator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def doctor(session_factory) -> Doctor:
    async with session_factory() as session:
        doctor = Doctor(name="Dr. Sarah Johnson", specialization="Cardiology")
        session.add(doctor)
        await session.commit()
        await session.refresh(doctor)
    return doctor


@pytest.fixture
def make_slot(session_factory, doctor):
    """Factory for slots starting tomorrow (or `start_in` from now)."""

    async def _make(
        capacity: int = 1,
        available: Optional[int] = None,
        start_in: timedelta = timedelta(days=1),
    ) -> Slot:
        start = datetime.now(timezone.utc) + start_in
        async with session_factory() as session:
            slot = Slot(
                doctor_id=doctor.id,
                start_time=start,
                end_time=start + timedelta(minutes=30),
                total_capacity=capacity,
                available_seats=capacity if available is None else available,
            )
            session.add(slot)
            await session.commit()
            await session.refresh(slot)
        return slot

    return _make


async def read_available(session_factory, slot_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(select(Slot.available_seats).where(Slot.id == slot_id))


async def read_booking(session_factory, booking_id: int) -> Booking:
    async with session_factory() as session:
        return await session.get(Booking, booking_id)


async def count_bookings(session_factory, slot_id: int) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count()).select_from(Booking).where(Booking.slot_id == slot_id)
        )


async def assert_capacity_invariant(session_factory, slot_id: int) -> None:
    """available_seats == total_capacity - seats held by PENDING/CONFIRMED bookings."""
    async with session_factory() as session:
        slot = await session.get(Slot, slot_id)
        held = await session.scalar(
            select(func.coalesce(func.sum(Booking.seats_booked), 0)).where(
                Booking.slot_id == slot_id,
                Booking.status.in_(HOLDING_STATUSES),
            )
        )
    assert slot.available_seats == slot.total_capacity - held
    assert 0 <= slot.available_seats <= slot.total_capacity
