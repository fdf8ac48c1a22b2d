"""
Capacity ledger: the per-slot available-seats counter.

A CapacityLedger is bound to one open transaction. `lock_and_read` must come
first; `decrement` and `increment` assume the slot row is already locked by
the same transaction. Nothing here commits: changes become visible to other
readers only when the enclosing transaction commits.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.core.exceptions import ConcurrentConflictError, NotFoundError
from slotbook.models.slot import Slot


class CapacityLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def lock_and_read(self, slot_id: int) -> int:
        """Lock the slot row for the rest of the transaction and return available_seats."""
        result = await self.session.execute(
            select(Slot.available_seats)
            .where(Slot.id == slot_id)
            .with_for_update()
        )
        available = result.scalar_one_or_none()
        if available is None or available < 0:
            raise NotFoundError(f"Slot {slot_id} not found")
        return available

    async def decrement(self, slot_id: int, seats: int) -> None:
        result = await self.session.execute(
            update(Slot)
            .where(Slot.id == slot_id, Slot.available_seats >= seats)
            .values(available_seats=Slot.available_seats - seats)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # The seats read under lock_and_read are gone, so the row lock did not hold
            raise ConcurrentConflictError(
                f"Seats on slot {slot_id} changed while booking. Please try again.",
                slot_id=slot_id,
            )

    async def increment(self, slot_id: int, seats: int) -> bool:
        """
        Return seats to the slot. Returns False, changing nothing, when that
        would push available_seats above total_capacity (a double release).
        """
        result = await self.session.execute(
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.available_seats + seats <= Slot.total_capacity,
            )
            .values(available_seats=Slot.available_seats + seats)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
