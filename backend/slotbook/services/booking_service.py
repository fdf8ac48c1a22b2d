"""
Booking coordinator with concurrency-safe seat reservation.

CONCURRENCY STRATEGY: Pessimistic Locking, No Automatic Retry
=============================================================

Problem:
  Two patients try to book the last seat of a slot simultaneously.
  Both read available_seats=1, both decrement to 0, both succeed.
  Result: Overbooking.

Solution:
  Every state change that touches a slot's capacity runs inside one
  transaction that holds the slot exclusively:

  1. Acquire the in-process lock for the slot (bounded wait)
  2. BEGIN; SELECT available_seats FROM slots WHERE id = :slot_id FOR UPDATE
  3. If available_seats >= requested: UPDATE ... SET available_seats = available_seats - N,
     INSERT the booking, COMMIT
  4. Otherwise ROLLBACK and report the availability seen under the lock

  Concurrent requests for one slot are therefore applied in some serial order.
  Requests for different slots never wait on each other.

  Lock wait timeouts and deadlocks are reported as ConcurrentConflictError
  after rollback. The coordinator never retries on its own; the caller decides
  whether and when to try again.

Holds:
  New bookings are PENDING with a short expiry (the hold window). `confirm`
  turns a hold into a CONFIRMED booking. Holds that are never confirmed are
  returned to the slot by `reclaim_expired`, each in its own transaction.
  Setting BOOKING_AUTO_CONFIRM creates bookings as CONFIRMED directly.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from slotbook.core.exceptions import (
    AlreadyTerminalError,
    BookingError,
    ConcurrentConflictError,
    InsufficientCapacityError,
    InternalError,
    InvalidRequestError,
    NotFoundError,
)
from slotbook.core.logging import get_logger
from slotbook.core.metrics import booking_latency, record_booking_attempt, record_release
from slotbook.core.timeutils import as_utc, utcnow
from slotbook.models.booking import Booking, BookingStatus
from slotbook.models.slot import Slot
from slotbook.services.capacity_ledger import CapacityLedger
from slotbook.services.slot_locks import SlotLocks

logger = get_logger(__name__)

DEFAULT_HOLD_WINDOW = timedelta(minutes=2)
DEFAULT_LOCK_TIMEOUT = 5.0

# deadlock_detected, lock_not_available, serialization_failure
LOCK_CONFLICT_SQLSTATES = {"40P01", "55P03", "40001"}
# ER_LOCK_WAIT_TIMEOUT, ER_LOCK_DEADLOCK
LOCK_CONFLICT_MYSQL_CODES = {1205, 1213}

_OUTCOMES = {
    InvalidRequestError: "invalid",
    NotFoundError: "not_found",
    InsufficientCapacityError: "insufficient",
    ConcurrentConflictError: "conflict",
}


def is_lock_conflict(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in LOCK_CONFLICT_SQLSTATES:
        return True
    args = getattr(orig, "args", ())
    if args and args[0] in LOCK_CONFLICT_MYSQL_CODES:
        return True
    message = str(exc).lower()
    return (
        "deadlock" in message
        or "lock timeout" in message
        or "database is locked" in message
    )


class BookingCoordinator:
    """
    Owns every write to Slot.available_seats.

    One instance per application, built with an explicit session factory.
    Each operation opens its own session and transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        hold_window: timedelta = DEFAULT_HOLD_WINDOW,
        auto_confirm: bool = False,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[SlotLocks] = None,
    ):
        self.session_factory = session_factory
        self.lock_timeout = lock_timeout
        self.hold_window = hold_window
        self.auto_confirm = auto_confirm
        self.clock = clock
        self.locks = locks or SlotLocks()

    # ------------------------------------------------------------------ book

    async def book(
        self,
        slot_id: int,
        requester_name: str,
        seats: int = 1,
        requester_email: Optional[str] = None,
        requester_phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """
        Reserve `seats` on a slot.

        Raises InvalidRequestError, NotFoundError, InsufficientCapacityError,
        ConcurrentConflictError or InternalError. On any error nothing has
        been written.
        """
        started = time.perf_counter()
        try:
            name = self._validate(slot_id, requester_name, seats)
            booking = await self._book(
                slot_id, name, seats, requester_email, requester_phone, notes
            )
        except BookingError as exc:
            record_booking_attempt(_OUTCOMES.get(type(exc), "error"))
            raise
        finally:
            booking_latency.observe(time.perf_counter() - started)

        record_booking_attempt("success")
        logger.info(
            "booking_created",
            booking_id=booking.id,
            slot_id=slot_id,
            seats=seats,
            status=booking.status,
            expires_at=booking.expires_at.isoformat() if booking.expires_at else None,
        )
        return booking

    @staticmethod
    def _validate(slot_id: int, requester_name: str, seats: int) -> str:
        if isinstance(slot_id, bool) or not isinstance(slot_id, int) or slot_id < 1:
            raise InvalidRequestError("Slot ID is required")
        name = (requester_name or "").strip()
        if not name:
            raise InvalidRequestError("Patient name is required")
        if isinstance(seats, bool) or not isinstance(seats, int) or seats < 1:
            raise InvalidRequestError("Must book at least 1 seat")
        return name

    async def _book(
        self,
        slot_id: int,
        name: str,
        seats: int,
        email: Optional[str],
        phone: Optional[str],
        notes: Optional[str],
    ) -> Booking:
        async with self._slot_transaction(slot_id) as (session, ledger):
            available = await ledger.lock_and_read(slot_id)

            if available < seats:
                logger.warning(
                    "booking_rejected_no_seats",
                    slot_id=slot_id,
                    requested=seats,
                    available=available,
                )
                raise InsufficientCapacityError(available=available, requested=seats)

            await ledger.decrement(slot_id, seats)

            status = BookingStatus.CONFIRMED if self.auto_confirm else BookingStatus.PENDING
            booking = Booking(
                slot_id=slot_id,
                patient_name=name,
                patient_email=email or None,
                patient_phone=phone or None,
                notes=notes,
                seats_booked=seats,
                status=status.value,
                expires_at=self.clock() + self.hold_window,
            )
            session.add(booking)
            await session.flush()
            await session.refresh(booking)

        return booking

    # --------------------------------------------------------------- confirm

    async def confirm(self, booking_id: int) -> Booking:
        """
        PENDING -> CONFIRMED.

        A hold that has already expired is reclaimed on the spot and the call
        fails with AlreadyTerminalError.
        """
        slot_id = await self._slot_of(booking_id)
        expired = False

        async with self._slot_transaction(slot_id) as (session, ledger):
            await ledger.lock_and_read(slot_id)
            booking = await self._lock_booking(session, booking_id)

            if booking.status != BookingStatus.PENDING.value:
                raise AlreadyTerminalError(booking.id, booking.status)

            if booking.expires_at is not None and as_utc(booking.expires_at) <= self.clock():
                await self._release(session, ledger, booking, BookingStatus.FAILED)
                expired = True
            else:
                booking.status = BookingStatus.CONFIRMED.value
                booking.expires_at = None
                await session.flush()
                await session.refresh(booking)

        if expired:
            record_release("expired")
            logger.info(
                "booking_reclaimed",
                booking_id=booking.id,
                slot_id=slot_id,
                seats_restored=booking.seats_booked,
                trigger="confirm",
            )
            raise AlreadyTerminalError(
                booking.id,
                booking.status,
                message=f"Booking {booking.id} hold expired before confirmation",
            )

        logger.info("booking_confirmed", booking_id=booking.id, slot_id=slot_id)
        return booking

    # ---------------------------------------------------------------- cancel

    async def cancel(self, booking_id: int) -> Booking:
        """Cancel a PENDING or CONFIRMED booking and return its seats to the slot."""
        slot_id = await self._slot_of(booking_id)

        async with self._slot_transaction(slot_id) as (session, ledger):
            await ledger.lock_and_read(slot_id)
            booking = await self._lock_booking(session, booking_id)

            if booking.is_terminal:
                raise AlreadyTerminalError(booking.id, booking.status)

            await self._release(session, ledger, booking, BookingStatus.CANCELLED)

        record_release("cancelled")
        logger.info(
            "booking_cancelled",
            booking_id=booking.id,
            slot_id=slot_id,
            seats_restored=booking.seats_booked,
        )
        return booking

    # --------------------------------------------------------------- reclaim

    async def reclaim_expired(self) -> int:
        """
        Return the seats of every PENDING booking whose hold has expired.

        Each booking is reclaimed in its own transaction; one failure is
        logged and does not stop the rest. Safe to run repeatedly: a booking
        that is no longer PENDING is skipped. Returns the number reclaimed.
        """
        now = self.clock()
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Booking.id, Booking.slot_id)
                    .where(
                        Booking.status == BookingStatus.PENDING.value,
                        Booking.expires_at <= now,
                    )
                    .order_by(Booking.expires_at.asc())
                )
                candidates = result.all()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("reclaim_scan_failed", error=str(exc))
            raise InternalError("Could not scan for expired bookings") from exc

        reclaimed = 0
        for booking_id, slot_id in candidates:
            try:
                if await self._reclaim_one(booking_id, slot_id, now):
                    reclaimed += 1
            except BookingError as exc:
                logger.warning(
                    "booking_reclaim_failed",
                    booking_id=booking_id,
                    slot_id=slot_id,
                    error=exc.code,
                    detail=exc.message,
                )

        if candidates:
            logger.info("expired_bookings_reclaimed", scanned=len(candidates), reclaimed=reclaimed)
        return reclaimed

    async def _reclaim_one(self, booking_id: int, slot_id: int, now: datetime) -> bool:
        async with self._slot_transaction(slot_id) as (session, ledger):
            await ledger.lock_and_read(slot_id)
            booking = await session.scalar(
                select(Booking).where(Booking.id == booking_id).with_for_update()
            )
            # Status re-checked under the lock; confirm/cancel may have won the race
            if (
                booking is None
                or booking.status != BookingStatus.PENDING.value
                or booking.expires_at is None
                or as_utc(booking.expires_at) > now
            ):
                return False

            await self._release(session, ledger, booking, BookingStatus.FAILED)

        record_release("expired")
        logger.info(
            "booking_reclaimed",
            booking_id=booking_id,
            slot_id=slot_id,
            seats_restored=booking.seats_booked,
            trigger="sweep",
        )
        return True

    # --------------------------------------------------------------- helpers

    @asynccontextmanager
    async def _slot_transaction(
        self, slot_id: int
    ) -> AsyncIterator[tuple[AsyncSession, CapacityLedger]]:
        """
        Exclusive access to one slot for the body of the block: in-process lock,
        then a transaction that commits on success and rolls back on any error.
        Storage and connection errors leave as ConcurrentConflictError or InternalError.
        """
        async with self.locks.hold(slot_id, self.lock_timeout):
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        await self._bound_lock_wait(session)
                        yield session, CapacityLedger(session)
            except (SQLAlchemyError, OSError) as exc:
                raise self._translate(exc, slot_id) from exc

    async def _bound_lock_wait(self, session: AsyncSession) -> None:
        """Cap how long the database itself will wait on a row lock."""
        dialect = session.bind.dialect.name
        if dialect == "postgresql":
            timeout_ms = max(int(self.lock_timeout * 1000), 1)
            await session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
        elif dialect == "mysql":
            timeout_s = max(int(self.lock_timeout), 1)
            await session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {timeout_s}"))

    def _translate(self, exc: Exception, slot_id: int) -> BookingError:
        if isinstance(exc, DBAPIError) and is_lock_conflict(exc):
            logger.warning("booking_lock_conflict", slot_id=slot_id, error=str(exc.orig))
            return ConcurrentConflictError(slot_id=slot_id)
        logger.error("booking_storage_error", slot_id=slot_id, error=str(exc))
        return InternalError("Booking failed due to a storage error")

    async def _slot_of(self, booking_id: int) -> int:
        try:
            async with self.session_factory() as session:
                slot_id = await session.scalar(
                    select(Booking.slot_id).where(Booking.id == booking_id)
                )
        except (SQLAlchemyError, OSError) as exc:
            raise InternalError("Could not load booking") from exc
        if slot_id is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return slot_id

    @staticmethod
    async def _lock_booking(session: AsyncSession, booking_id: int) -> Booking:
        booking = await session.scalar(
            select(Booking).where(Booking.id == booking_id).with_for_update()
        )
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    @staticmethod
    async def _release(
        session: AsyncSession,
        ledger: CapacityLedger,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:
        restored = await ledger.increment(booking.slot_id, booking.seats_booked)
        if not restored:
            # Seats already back in the slot; only the status is stale
            logger.error(
                "ledger_release_rejected",
                booking_id=booking.id,
                slot_id=booking.slot_id,
                seats=booking.seats_booked,
            )
        booking.status = new_status.value
        await session.flush()
        await session.refresh(booking)


# ---------------------------------------------------------------- read side


def _with_slot(query):
    return query.options(selectinload(Booking.slot).selectinload(Slot.doctor))


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    result = await db.execute(_with_slot(select(Booking)).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def list_bookings(
    db: AsyncSession,
    slot_id: Optional[int] = None,
    status: Optional[BookingStatus] = None,
    limit: int = 20,
) -> list[Booking]:
    """Newest first. Unlocked snapshot read."""
    query = _with_slot(select(Booking))
    if slot_id is not None:
        query = query.where(Booking.slot_id == slot_id)
    if status is not None:
        query = query.where(Booking.status == BookingStatus(status).value)
    result = await db.execute(
        query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
