from slotbook.schemas.doctor import DoctorCreate, DoctorResponse
from slotbook.schemas.slot import (
    SlotCreate, SlotResponse, SlotDetailResponse, SlotListResponse, SlotAvailabilityResponse,
)
from slotbook.schemas.booking import (
    BookingCreate, BookingResponse, BookingDetailResponse, BookingStatusResponse, ReclaimResponse,
)

__all__ = [
    "DoctorCreate", "DoctorResponse",
    "SlotCreate", "SlotResponse", "SlotDetailResponse", "SlotListResponse", "SlotAvailabilityResponse",
    "BookingCreate", "BookingResponse", "BookingDetailResponse", "BookingStatusResponse", "ReclaimResponse",
]
