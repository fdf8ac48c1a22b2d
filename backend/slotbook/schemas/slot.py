"""
Pydantic schemas for slot-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from slotbook.core.timeutils import as_utc


class SlotCreate(BaseModel):
    doctor_id: int = Field(..., gt=0)
    start_time: datetime
    end_time: datetime
    max_patients: int = Field(default=1, gt=0, le=1000)

    @model_validator(mode="after")
    def check_time_order(self) -> "SlotCreate":
        # Offsets are optional on input; naive times are taken as UTC
        self.start_time = as_utc(self.start_time)
        self.end_time = as_utc(self.end_time)
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotResponse(BaseModel):
    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    total_capacity: int
    available_seats: int

    model_config = {"from_attributes": True}


class SlotDetailResponse(SlotResponse):
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None

    @classmethod
    def from_slot(cls, slot) -> "SlotDetailResponse":
        return cls(
            id=slot.id,
            doctor_id=slot.doctor_id,
            start_time=slot.start_time,
            end_time=slot.end_time,
            total_capacity=slot.total_capacity,
            available_seats=slot.available_seats,
            doctor_name=slot.doctor.name if slot.doctor else None,
            specialization=slot.doctor.specialization if slot.doctor else None,
        )


class SlotListResponse(BaseModel):
    slots: list[SlotDetailResponse]
    count: int
    cached: bool = False


class SlotAvailabilityResponse(BaseModel):
    slot_id: int
    available_seats: int
