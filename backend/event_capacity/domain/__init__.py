from event_capacity.domain.booking_status import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    BookingStatus,
    can_transition,
    ensure_transition,
)

__all__ = [
    "ACTIVE_STATUSES", "ALLOWED_TRANSITIONS", "BookingStatus",
    "can_transition", "ensure_transition",
]
