"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, EmailStr, Field


class BookingCreate(BaseModel):
    slot_id: int = Field(..., gt=0)
    patient_name: str = Field(..., min_length=1, max_length=255)
    patient_email: Optional[EmailStr] = None
    patient_phone: Optional[str] = Field(None, max_length=20)
    notes: Optional[str] = Field(None, max_length=2000)
    seats: int = Field(default=1, gt=0, le=50)


class BookingResponse(BaseModel):
    id: int
    slot_id: int
    patient_name: str
    patient_email: Optional[str]
    patient_phone: Optional[str]
    seats_booked: int
    status: str
    expires_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    """Booking row joined with its slot and doctor."""

    doctor_name: Optional[str] = None
    start_time: Optional[datetime] = None
    available_seats: Optional[int] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingDetailResponse":
        slot = booking.slot
        return cls(
            **BookingResponse.model_validate(booking).model_dump(),
            doctor_name=slot.doctor.name if slot and slot.doctor else None,
            start_time=slot.start_time if slot else None,
            available_seats=slot.available_seats if slot else None,
        )


class BookingStatusResponse(BaseModel):
    message: str
    booking_id: int
    status: str


class ReclaimResponse(BaseModel):
    reclaimed_count: int
