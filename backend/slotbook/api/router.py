"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from slotbook.api.routes import admin, bookings, doctors, slots

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(doctors.router)
api_router.include_router(slots.router)
api_router.include_router(bookings.router)
api_router.include_router(admin.router)
