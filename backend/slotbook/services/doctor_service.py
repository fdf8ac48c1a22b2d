"""
Doctor service handling CRUD operations.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.models.doctor import Doctor
from slotbook.core.exceptions import InvalidRequestError
from slotbook.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SPECIALIZATION = "General Physician"


async def create_doctor(db: AsyncSession, name: str, specialization: Optional[str] = None) -> Doctor:
    name = (name or "").strip()
    if not name:
        raise InvalidRequestError("Doctor name is required")

    doctor = Doctor(name=name, specialization=specialization or DEFAULT_SPECIALIZATION)
    db.add(doctor)
    await db.flush()
    await db.refresh(doctor)

    logger.info("doctor_created", doctor_id=doctor.id, name=doctor.name)
    return doctor


async def list_doctors(db: AsyncSession) -> list[Doctor]:
    result = await db.execute(select(Doctor).order_by(Doctor.name.asc()))
    return list(result.scalars().all())
