"""
Doctor (provider) model. Owns a set of bookable slots.
"""

from sqlalchemy import Column, Integer, String, Index
from sqlalchemy.orm import relationship

from slotbook.db.base import Base, TimestampMixin


class Doctor(Base, TimestampMixin):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=True)

    slots = relationship(
        "Slot",
        back_populates="doctor",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_doctors_name", "name"),
    )

    def __repr__(self) -> str:
        return f"<Doctor(id={self.id}, name={self.name})>"
