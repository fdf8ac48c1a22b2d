"""
Booking error taxonomy.

Every outcome of the booking core other than success is one of these.
InsufficientCapacityError and ConcurrentConflictError are expected, frequent
outcomes that callers show to users; only InternalError means "try again
later" in the generic sense.
"""

from typing import Optional


class BookingError(Exception):
    """Base class. `code` is the stable machine-readable error name."""

    status_code: int = 400
    code: str = "booking_error"
    retryable: bool = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class InvalidRequestError(BookingError):
    status_code = 400
    code = "invalid_request"


class NotFoundError(BookingError):
    status_code = 404
    code = "not_found"


class InsufficientCapacityError(BookingError):
    """Business rejection; carries the availability seen under the lock."""

    status_code = 409
    code = "insufficient_capacity"

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough seats available. Only {available} seat(s) left."
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(available=self.available, requested=self.requested)
        return data


class ConcurrentConflictError(BookingError):
    """Lock wait timed out or deadlock detected. Safe to retry with backoff."""

    status_code = 409
    code = "concurrent_conflict"
    retryable = True

    def __init__(self, message: str = "Concurrent booking detected. Please try again.",
                 slot_id: Optional[int] = None):
        self.slot_id = slot_id
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = True
        return data


class AlreadyTerminalError(BookingError):
    status_code = 409
    code = "already_terminal"

    def __init__(self, booking_id: int, status: str, message: Optional[str] = None):
        self.booking_id = booking_id
        self.status = status
        super().__init__(message or f"Booking {booking_id} is already {status}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data


class InternalError(BookingError):
    status_code = 500
    code = "internal"
