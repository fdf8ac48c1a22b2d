"""
Booking model: a reservation of one or more seats against a slot.

Key design decisions:
- Created in the same transaction that decrements Slot.available_seats
- Status is never deleted; FAILED and CANCELLED rows keep the history
- `expires_at` bounds how long a PENDING hold keeps its seats
"""

import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from slotbook.db.base import Base, TimestampMixin


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Statuses whose seats are counted against the slot
HOLDING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id", ondelete="CASCADE"), nullable=False)
    patient_name = Column(String(255), nullable=False)
    patient_email = Column(String(255), nullable=True)
    patient_phone = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    seats_booked = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    slot = relationship("Slot", back_populates="bookings")

    __table_args__ = (
        CheckConstraint("seats_booked > 0", name="check_booking_seats_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'FAILED', 'CANCELLED')",
            name="check_booking_status",
        ),
        Index("ix_bookings_slot", "slot_id"),
        # Expiry sweep: PENDING rows past their deadline
        Index("ix_bookings_status_expires", "status", "expires_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.FAILED.value, BookingStatus.CANCELLED.value)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, slot={self.slot_id}, seats={self.seats_booked}, status={self.status})>"
