"""
Slot model: one bookable time window for one doctor.

Key design decisions:
- `available_seats` is the capacity ledger column. Only the booking
  coordinator writes it, always under a row lock.
- CHECK constraints are the last line of defence for 0 <= available <= total.
- `total_capacity` is fixed at creation.
"""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from slotbook.db.base import Base, TimestampMixin


class Slot(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    total_capacity = Column(Integer, nullable=False, default=1)
    available_seats = Column(Integer, nullable=False)

    doctor = relationship("Doctor", back_populates="slots")
    bookings = relationship(
        "Booking",
        back_populates="slot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_slot_time_order"),
        CheckConstraint("total_capacity > 0", name="check_slot_capacity_positive"),
        CheckConstraint("available_seats >= 0", name="check_available_seats_non_negative"),
        CheckConstraint("available_seats <= total_capacity", name="check_available_lte_total"),
        Index("ix_slots_doctor", "doctor_id"),
        # Listing query: open slots ordered by start time
        Index("ix_slots_available_start", "available_seats", "start_time"),
    )

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, doctor={self.doctor_id}, available={self.available_seats}/{self.total_capacity})>"
