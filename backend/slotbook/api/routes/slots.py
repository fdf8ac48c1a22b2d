"""
Slot endpoints. Listing is cached in Redis; single-slot reads are not.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.db.session import get_db
from slotbook.schemas.slot import SlotAvailabilityResponse, SlotDetailResponse, SlotListResponse
from slotbook.services.slot_service import get_slot, get_slot_availability, list_available_slots
from slotbook.services.cache_service import get_cached_slots, set_cached_slots
from slotbook.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/slots", tags=["Slots"])


@router.get("/", response_model=SlotListResponse)
async def list_slots_endpoint(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    Upcoming slots that still have seats.
    Snapshot read: a listed slot can fill up before it is booked.
    """
    cached = await get_cached_slots(limit)
    if cached:
        logger.info("slot_list_cache_hit", limit=limit)
        cached["cached"] = True
        return SlotListResponse(**cached)

    slots = await list_available_slots(db, limit=limit)
    response_data = {
        "slots": [SlotDetailResponse.from_slot(s).model_dump() for s in slots],
        "count": len(slots),
        "cached": False,
    }
    await set_cached_slots(limit, response_data)
    return SlotListResponse(**response_data)


@router.get("/{slot_id}", response_model=SlotDetailResponse)
async def get_slot_endpoint(slot_id: int, db: AsyncSession = Depends(get_db)):
    slot = await get_slot(db, slot_id)
    return SlotDetailResponse.from_slot(slot)


@router.get("/{slot_id}/availability", response_model=SlotAvailabilityResponse)
async def slot_availability_endpoint(slot_id: int, db: AsyncSession = Depends(get_db)):
    available = await get_slot_availability(db, slot_id)
    return SlotAvailabilityResponse(slot_id=slot_id, available_seats=available)
