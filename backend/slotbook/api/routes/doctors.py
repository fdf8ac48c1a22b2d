"""
Doctor listing endpoint.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.db.session import get_db
from slotbook.schemas.doctor import DoctorResponse
from slotbook.services.doctor_service import list_doctors

router = APIRouter(prefix="/doctors", tags=["Doctors"])


@router.get("/", response_model=list[DoctorResponse])
async def list_doctors_endpoint(db: AsyncSession = Depends(get_db)):
    return await list_doctors(db)
