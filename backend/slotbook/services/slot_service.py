"""
Slot service: administrative creation and unlocked read access.

Reads here never lock. A slot listed as available may be full by the time a
booking reaches the coordinator; the coordinator's locked check decides.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from slotbook.models.doctor import Doctor
from slotbook.models.slot import Slot
from slotbook.core.exceptions import InvalidRequestError, NotFoundError
from slotbook.core.logging import get_logger
from slotbook.core.timeutils import as_utc, utcnow

logger = get_logger(__name__)


async def create_slot(
    db: AsyncSession,
    doctor_id: int,
    start_time: datetime,
    end_time: datetime,
    total_capacity: int = 1,
) -> Slot:
    """Create a slot with every seat available."""
    start_time, end_time = as_utc(start_time), as_utc(end_time)
    if end_time <= start_time:
        raise InvalidRequestError("End time must be after start time")
    if total_capacity < 1:
        raise InvalidRequestError("Slot capacity must be at least 1")

    doctor = await db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFoundError(f"Doctor {doctor_id} not found")

    slot = Slot(
        doctor_id=doctor_id,
        start_time=start_time,
        end_time=end_time,
        total_capacity=total_capacity,
        available_seats=total_capacity,
    )
    db.add(slot)
    await db.flush()
    await db.refresh(slot)

    logger.info(
        "slot_created",
        slot_id=slot.id,
        doctor_id=doctor_id,
        start_time=start_time.isoformat(),
        capacity=total_capacity,
    )
    return slot


async def get_slot(db: AsyncSession, slot_id: int) -> Slot:
    result = await db.execute(
        select(Slot).options(selectinload(Slot.doctor)).where(Slot.id == slot_id)
    )
    slot = result.scalar_one_or_none()
    if not slot:
        raise NotFoundError(f"Slot {slot_id} not found")
    return slot


async def get_slot_availability(db: AsyncSession, slot_id: int) -> int:
    """Current available_seats, read without locking."""
    result = await db.execute(select(Slot.available_seats).where(Slot.id == slot_id))
    available = result.scalar_one_or_none()
    if available is None:
        raise NotFoundError(f"Slot {slot_id} not found")
    return available


async def list_available_slots(
    db: AsyncSession,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> list[Slot]:
    """Upcoming slots with at least one free seat, soonest first."""
    now = now or utcnow()
    result = await db.execute(
        select(Slot)
        .options(selectinload(Slot.doctor))
        .where(Slot.available_seats > 0, Slot.start_time > now)
        .order_by(Slot.start_time.asc())
        .limit(limit)
    )
    return list(result.scalars().all())
