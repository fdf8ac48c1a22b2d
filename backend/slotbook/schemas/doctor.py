"""
Pydantic schemas for doctor-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class DoctorCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    specialization: Optional[str] = Field(None, max_length=255)


class DoctorResponse(BaseModel):
    id: int
    name: str
    specialization: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
