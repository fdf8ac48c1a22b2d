from slotbook.models.doctor import Doctor
from slotbook.models.slot import Slot
from slotbook.models.booking import Booking, BookingStatus

__all__ = ["Doctor", "Slot", "Booking", "BookingStatus"]
