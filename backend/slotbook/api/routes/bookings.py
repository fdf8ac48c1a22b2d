"""
Booking endpoints with concurrency-safe seat reservation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.api.deps import get_coordinator
from slotbook.core.exceptions import AlreadyTerminalError
from slotbook.db.session import get_db
from slotbook.models.booking import BookingStatus
from slotbook.schemas.booking import (
    BookingCreate, BookingDetailResponse, BookingResponse, BookingStatusResponse,
)
from slotbook.services.booking_service import BookingCoordinator, get_booking, list_bookings
from slotbook.services.cache_service import invalidate_slot_cache

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    """
    Book seats on a slot.

    The slot row is locked for the duration of the booking transaction, so
    concurrent requests for the last seat get exactly one success. A 409 with
    `retryable: true` means the lock could not be obtained in time and the
    request may be repeated; any other 409 is final.
    """
    booking = await coordinator.book(
        booking_data.slot_id,
        booking_data.patient_name,
        seats=booking_data.seats,
        requester_email=booking_data.patient_email,
        requester_phone=booking_data.patient_phone,
        notes=booking_data.notes,
    )
    await invalidate_slot_cache()
    return booking


@router.get("/", response_model=list[BookingDetailResponse])
async def list_bookings_endpoint(
    slot_id: Optional[int] = Query(None, ge=1),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    bookings = await list_bookings(db, slot_id=slot_id, status=status_filter, limit=limit)
    return [BookingDetailResponse.from_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking_endpoint(booking_id: int, db: AsyncSession = Depends(get_db)):
    return BookingDetailResponse.from_booking(await get_booking(db, booking_id))


@router.post("/{booking_id}/confirm", response_model=BookingStatusResponse)
async def confirm_booking_endpoint(
    booking_id: int,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    """Turn a PENDING hold into a confirmed appointment before it expires."""
    try:
        booking = await coordinator.confirm(booking_id)
    except AlreadyTerminalError:
        # An expired hold is reclaimed by the failed confirm
        await invalidate_slot_cache()
        raise
    return BookingStatusResponse(
        message="Booking confirmed",
        booking_id=booking.id,
        status=booking.status,
    )


@router.delete("/{booking_id}", response_model=BookingStatusResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    coordinator: BookingCoordinator = Depends(get_coordinator),
):
    """Cancel a booking and release its seats back to the slot."""
    booking = await coordinator.cancel(booking_id)
    await invalidate_slot_cache()
    return BookingStatusResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )
