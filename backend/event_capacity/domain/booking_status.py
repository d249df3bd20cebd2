"""
Booking lifecycle as an explicit state machine.

    pending ──► confirmed
       │            │
       └──► cancelled ◄┘

`cancelled` is terminal. Only pending and confirmed bookings hold capacity.
"""

from enum import Enum

from event_capacity.core.exceptions import InvalidStatusTransition


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @property
    def holds_capacity(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


def can_transition(current: BookingStatus | str, target: BookingStatus | str) -> bool:
    return BookingStatus(target) in ALLOWED_TRANSITIONS[BookingStatus(current)]


def ensure_transition(current: BookingStatus | str, target: BookingStatus | str) -> BookingStatus:
    """Return the target status, or raise if the move is not in the table."""
    current, target = BookingStatus(current), BookingStatus(target)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(current.value, target.value)
    return target
