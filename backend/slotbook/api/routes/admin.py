"""
Administrative endpoints: doctors, slots and manual expiry reclamation.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.api.deps import get_coordinator
from slotbook.db.session import get_db
from slotbook.schemas.booking import ReclaimResponse
from slotbook.schemas.doctor import DoctorCreate, DoctorResponse
from slotbook.schemas.slot import SlotCreate, SlotResponse
from slotbook.services.booking_service import BookingCoordinator
from slotbook.services.cache_service import invalidate_slot_cache
from slotbook.services.doctor_service import create_doctor
from slotbook.services.slot_service import create_slot

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/doctors", response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
async def create_doctor_endpoint(doctor_data: DoctorCreate, db: AsyncSession = Depends(get_db)):
    return await create_doctor(db, doctor_data.name, doctor_data.specialization)


@router.post("/slots", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot_endpoint(slot_data: SlotCreate, db: AsyncSession = Depends(get_db)):
    """Create a slot with `max_patients` seats, all available."""
    slot = await create_slot(
        db,
        slot_data.doctor_id,
        slot_data.start_time,
        slot_data.end_time,
        total_capacity=slot_data.max_patients,
    )
    # Listing readers must see the new slot once the cache is dropped
    await db.commit()
    await invalidate_slot_cache()
    return slot


@router.post("/reclaim", response_model=ReclaimResponse)
async def reclaim_expired_endpoint(coordinator: BookingCoordinator = Depends(get_coordinator)):
    """Run one expiry sweep now instead of waiting for the background task."""
    reclaimed = await coordinator.reclaim_expired()
    if reclaimed:
        await invalidate_slot_cache()
    return ReclaimResponse(reclaimed_count=reclaimed)
