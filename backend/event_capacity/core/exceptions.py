"""
Domain error taxonomy for capacity management.

Services raise these; the API layer maps them to HTTP responses through
the exception handler table in `event_capacity.api.exception_handlers`.
Each error carries a stable machine-readable `code` and the HTTP status
the booking handlers should answer with.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    EVENT_NOT_BOOKABLE = "EVENT_NOT_BOOKABLE"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    CAPACITY_BELOW_COMMITTED = "CAPACITY_BELOW_COMMITTED"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    SLUG_TAKEN = "SLUG_TAKEN"
    EVENT_HAS_ACTIVE_BOOKINGS = "EVENT_HAS_ACTIVE_BOOKINGS"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"


class CapacityError(Exception):
    """Base error with code, HTTP status and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class ValidationError(CapacityError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class NotFoundError(CapacityError):
    status_code = 404


class EventNotFound(NotFoundError):
    code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, event_id: int) -> None:
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class BookingNotFound(NotFoundError):
    code = ErrorCode.BOOKING_NOT_FOUND

    def __init__(self, booking_id: int) -> None:
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class UserNotFound(NotFoundError):
    code = ErrorCode.USER_NOT_FOUND

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class EventNotBookable(CapacityError):
    """Event exists but is unpublished or already in the past."""

    code = ErrorCode.EVENT_NOT_BOOKABLE
    status_code = 400

    def __init__(self, event_id: int, reason: str) -> None:
        super().__init__(f"Event {event_id} is not available for booking: {reason}")
        self.event_id = event_id
        self.reason = reason


class CapacityExceeded(CapacityError):
    code = ErrorCode.CAPACITY_EXCEEDED
    status_code = 409

    def __init__(self, event_id: int, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient capacity. Requested: {requested}, Available: {available}"
        )
        self.event_id = event_id
        self.requested = requested
        self.available = available


class DuplicateBooking(CapacityError):
    code = ErrorCode.DUPLICATE_BOOKING
    status_code = 409

    def __init__(self, event_id: int, user_id: int) -> None:
        super().__init__("You already have a booking for this event")
        self.event_id = event_id
        self.user_id = user_id


class CapacityBelowCommitted(CapacityError):
    code = ErrorCode.CAPACITY_BELOW_COMMITTED
    status_code = 409

    def __init__(self, event_id: int, requested: int, committed: int) -> None:
        super().__init__(
            f"Cannot reduce capacity to {requested}: {committed} spot(s) are already booked"
        )
        self.event_id = event_id
        self.requested = requested
        self.committed = committed


class InvalidStatusTransition(CapacityError):
    code = ErrorCode.INVALID_STATUS_TRANSITION
    status_code = 409

    def __init__(self, from_status: str, to_status: str) -> None:
        super().__init__(f"Illegal booking status transition: {from_status} -> {to_status}")
        self.from_status = from_status
        self.to_status = to_status


class SlugTaken(CapacityError):
    code = ErrorCode.SLUG_TAKEN
    status_code = 409

    def __init__(self, slug: str) -> None:
        super().__init__(f"An event with slug '{slug}' already exists")
        self.slug = slug


class EventHasActiveBookings(CapacityError):
    """Event still holds pending or confirmed bookings and cannot be removed."""

    code = ErrorCode.EVENT_HAS_ACTIVE_BOOKINGS
    status_code = 409

    def __init__(self, event_id: int, active: int) -> None:
        super().__init__(
            f"Cannot delete event with {active} active booking(s). "
            "Cancel bookings first or unpublish the event."
        )
        self.event_id = event_id
        self.active = active


class LockTimeout(CapacityError):
    """Transient contention on an event row. Safe to retry with backoff."""

    code = ErrorCode.LOCK_TIMEOUT
    status_code = 503

    def __init__(self, event_id: Optional[int] = None) -> None:
        super().__init__("The event is busy, please try again")
        self.event_id = event_id


class StoreUnavailable(CapacityError):
    """The database could not be reached. Never retried silently."""

    code = ErrorCode.STORE_UNAVAILABLE
    status_code = 503

    def __init__(self, detail: str = "Database unavailable") -> None:
        super().__init__(detail)
