"""
Tests for the booking coordinator: validation, capacity checks, locking,
atomicity and concurrent access.
"""

import asyncio
import sqlite3
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from slotbook.core.exceptions import (
    ConcurrentConflictError,
    InsufficientCapacityError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
)
from slotbook.core.timeutils import as_utc
from slotbook.models.booking import BookingStatus
from slotbook.services.booking_service import BookingCoordinator, is_lock_conflict
from slotbook.services.capacity_ledger import CapacityLedger

from conftest import assert_capacity_invariant, count_bookings, read_available


@pytest.mark.asyncio
async def test_book_creates_pending_hold(coordinator, session_factory, make_slot, clock):
    """A successful booking decrements availability and holds for two minutes."""
    slot = await make_slot(capacity=2)

    booking = await coordinator.book(slot.id, "Jane Patient", seats=1, requester_email="jane@example.com")

    assert booking.id is not None
    assert booking.status == BookingStatus.PENDING.value
    assert booking.seats_booked == 1
    assert booking.patient_email == "jane@example.com"
    assert as_utc(booking.expires_at) == clock.now + timedelta(minutes=2)
    assert await read_available(session_factory, slot.id) == 1
    await assert_capacity_invariant(session_factory, slot.id)


@pytest.mark.asyncio
async def test_book_auto_confirm(session_factory, make_slot, clock):
    coordinator = BookingCoordinator(session_factory, auto_confirm=True, clock=clock)
    slot = await make_slot(capacity=1)

    booking = await coordinator.book(slot.id, "Jane Patient")

    assert booking.status == BookingStatus.CONFIRMED.value
    assert await read_available(session_factory, slot.id) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("name, seats", [
    ("Jane Patient", 0),
    ("Jane Patient", -1),
    ("", 1),
    ("   ", 1),
])
async def test_book_invalid_request(coordinator, session_factory, make_slot, name, seats):
    slot = await make_slot(capacity=2)

    with pytest.raises(InvalidRequestError):
        await coordinator.book(slot.id, name, seats=seats)

    assert await read_available(session_factory, slot.id) == 2
    assert await count_bookings(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_book_invalid_request_skips_ledger(coordinator, monkeypatch):
    """Bad input is rejected before any storage access."""
    async def explode(*args, **kwargs):
        raise AssertionError("ledger touched")

    monkeypatch.setattr(CapacityLedger, "lock_and_read", explode)

    with pytest.raises(InvalidRequestError):
        await coordinator.book(1, "Jane Patient", seats=0)


@pytest.mark.asyncio
async def test_book_unknown_slot(coordinator, doctor):
    with pytest.raises(NotFoundError):
        await coordinator.book(99999, "Jane Patient", seats=1)


@pytest.mark.asyncio
async def test_book_insufficient_capacity_reports_available(coordinator, session_factory, make_slot):
    slot = await make_slot(capacity=3, available=1)

    with pytest.raises(InsufficientCapacityError) as exc_info:
        await coordinator.book(slot.id, "Jane Patient", seats=2)

    assert exc_info.value.available == 1
    assert exc_info.value.requested == 2
    assert await read_available(session_factory, slot.id) == 1
    assert await count_bookings(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_capacity_two_scenario(coordinator, session_factory, make_slot):
    """A takes one seat, B cannot take two, C takes the last one."""
    slot = await make_slot(capacity=2)

    await coordinator.book(slot.id, "Patient A", seats=1)
    assert await read_available(session_factory, slot.id) == 1

    with pytest.raises(InsufficientCapacityError) as exc_info:
        await coordinator.book(slot.id, "Patient B", seats=2)
    assert exc_info.value.available == 1

    await coordinator.book(slot.id, "Patient C", seats=1)
    assert await read_available(session_factory, slot.id) == 0
    await assert_capacity_invariant(session_factory, slot.id)


@pytest.mark.asyncio
async def test_concurrent_bookings_never_overbook(coordinator, session_factory, make_slot):
    """K concurrent single-seat requests against C seats: exactly C succeed."""
    capacity, requests = 3, 12
    slot = await make_slot(capacity=capacity)

    results = await asyncio.gather(
        *[coordinator.book(slot.id, f"Patient {i}", seats=1) for i in range(requests)],
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    rejections = [r for r in results if isinstance(r, InsufficientCapacityError)]
    assert len(successes) == capacity
    assert len(rejections) == requests - capacity
    assert await read_available(session_factory, slot.id) == 0
    assert await count_bookings(session_factory, slot.id) == capacity
    await assert_capacity_invariant(session_factory, slot.id)


@pytest.mark.asyncio
async def test_two_coordinators_share_one_database(session_factory, make_slot, clock):
    """Separate lock registries (two workers): no overbooking, no internal errors."""
    workers = [
        BookingCoordinator(session_factory, lock_timeout=5.0, clock=clock)
        for _ in range(2)
    ]
    slot = await make_slot(capacity=3)

    results = await asyncio.gather(
        *[workers[i % 2].book(slot.id, f"Patient {i}") for i in range(10)],
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert all(
        isinstance(r, (InsufficientCapacityError, ConcurrentConflictError)) for r in failures
    ), failures
    assert 1 <= len(successes) <= 3
    assert await read_available(session_factory, slot.id) == 3 - len(successes)
    await assert_capacity_invariant(session_factory, slot.id)


@pytest.mark.asyncio
async def test_stale_availability_read_is_retryable(coordinator, session_factory, make_slot, monkeypatch):
    """If the seats seen under the lock are gone at decrement time, the caller may retry."""
    slot = await make_slot(capacity=2, available=0)

    async def stale_read(self, slot_id):
        return 2

    monkeypatch.setattr(CapacityLedger, "lock_and_read", stale_read)

    with pytest.raises(ConcurrentConflictError) as exc_info:
        await coordinator.book(slot.id, "Jane Patient")

    assert exc_info.value.retryable
    assert await read_available(session_factory, slot.id) == 0
    assert await count_bookings(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_connection_failure_is_internal(coordinator, session_factory, make_slot, monkeypatch):
    """A driver that cannot reach the database surfaces as InternalError."""
    slot = await make_slot(capacity=1)

    async def refuse(session):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(coordinator, "_bound_lock_wait", refuse)

    with pytest.raises(InternalError) as exc_info:
        await coordinator.book(slot.id, "Jane Patient")

    assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)
    assert await read_available(session_factory, slot.id) == 1
    assert await count_bookings(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_last_seat_race(coordinator, session_factory, make_slot):
    slot = await make_slot(capacity=1)

    first, second = await asyncio.gather(
        coordinator.book(slot.id, "Patient A"),
        coordinator.book(slot.id, "Patient B"),
        return_exceptions=True,
    )

    outcomes = sorted(type(r).__name__ for r in (first, second))
    assert outcomes == ["Booking", "InsufficientCapacityError"]
    assert await read_available(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_lock_wait_timeout_is_retryable(coordinator, session_factory, make_slot):
    """A booking that cannot get the slot in time fails as a retryable conflict."""
    slot = await make_slot(capacity=2)
    coordinator.lock_timeout = 0.05

    async with coordinator.locks.hold(slot.id, timeout=1):
        with pytest.raises(ConcurrentConflictError) as exc_info:
            await coordinator.book(slot.id, "Jane Patient")

    assert exc_info.value.retryable is True
    assert exc_info.value.slot_id == slot.id
    assert await read_available(session_factory, slot.id) == 2

    # Lock released: the retry goes through
    await coordinator.book(slot.id, "Jane Patient")
    assert await read_available(session_factory, slot.id) == 1


@pytest.mark.asyncio
async def test_other_slots_are_not_blocked(coordinator, session_factory, make_slot):
    busy = await make_slot(capacity=1)
    free = await make_slot(capacity=1)
    coordinator.lock_timeout = 0.05

    async with coordinator.locks.hold(busy.id, timeout=1):
        booking = await coordinator.book(free.id, "Jane Patient")

    assert booking.slot_id == free.id
    assert await read_available(session_factory, free.id) == 0


@pytest.mark.asyncio
async def test_storage_error_mid_transaction_rolls_back(coordinator, session_factory, make_slot, monkeypatch):
    """A failure after the decrement leaves the slot and bookings untouched."""
    slot = await make_slot(capacity=2)
    original_decrement = CapacityLedger.decrement

    async def decrement_then_fail(self, slot_id, seats):
        await original_decrement(self, slot_id, seats)
        raise SQLAlchemyError("simulated disk failure")

    monkeypatch.setattr(CapacityLedger, "decrement", decrement_then_fail)

    with pytest.raises(InternalError):
        await coordinator.book(slot.id, "Jane Patient")

    assert await read_available(session_factory, slot.id) == 2
    assert await count_bookings(session_factory, slot.id) == 0


@pytest.mark.asyncio
async def test_database_lock_error_maps_to_conflict(coordinator, session_factory, make_slot, monkeypatch):
    slot = await make_slot(capacity=2)

    async def locked(self, slot_id):
        raise OperationalError(
            "SELECT available_seats FROM slots", {}, sqlite3.OperationalError("database is locked")
        )

    monkeypatch.setattr(CapacityLedger, "lock_and_read", locked)

    with pytest.raises(ConcurrentConflictError):
        await coordinator.book(slot.id, "Jane Patient")

    assert await read_available(session_factory, slot.id) == 2


class _DriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize("orig, expected", [
    (_DriverError("deadlock detected", pgcode="40P01"), True),
    (_DriverError("canceling statement due to lock timeout", pgcode="55P03"), True),
    (_DriverError(1213, None), True),
    (_DriverError("relation does not exist", pgcode="42P01"), False),
])
def test_is_lock_conflict(orig, expected):
    exc = OperationalError("SELECT 1", {}, orig)
    assert is_lock_conflict(exc) is expected


@pytest.mark.asyncio
async def test_invariant_holds_across_mixed_operations(coordinator, session_factory, make_slot, clock):
    slot = await make_slot(capacity=5)

    a = await coordinator.book(slot.id, "Patient A", seats=2)
    b = await coordinator.book(slot.id, "Patient B", seats=1)
    await assert_capacity_invariant(session_factory, slot.id)

    await coordinator.confirm(a.id)
    await coordinator.cancel(a.id)
    await assert_capacity_invariant(session_factory, slot.id)

    c = await coordinator.book(slot.id, "Patient C", seats=3)
    await assert_capacity_invariant(session_factory, slot.id)

    clock.advance(minutes=3)
    assert await coordinator.reclaim_expired() == 2  # b and c
    await assert_capacity_invariant(session_factory, slot.id)
    assert await read_available(session_factory, slot.id) == 5
    assert c.id != b.id
