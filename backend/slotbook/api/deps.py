"""
Request dependencies for objects owned by the application lifespan.
"""

from fastapi import Request

from slotbook.services.booking_service import BookingCoordinator


def get_coordinator(request: Request) -> BookingCoordinator:
    return request.app.state.coordinator
