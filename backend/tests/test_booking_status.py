"""
Tests for the booking lifecycle state machine.
"""

import pytest

from event_capacity.core.exceptions import InvalidStatusTransition
from event_capacity.domain.booking_status import (
    ACTIVE_STATUSES,
    BookingStatus,
    can_transition,
    ensure_transition,
)


@pytest.mark.parametrize(
    "current, target",
    [
        (BookingStatus.PENDING, BookingStatus.CONFIRMED),
        (BookingStatus.PENDING, BookingStatus.CANCELLED),
        (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    assert ensure_transition(current, target) is target


@pytest.mark.parametrize(
    "current, target",
    [
        (BookingStatus.CONFIRMED, BookingStatus.PENDING),
        (BookingStatus.CANCELLED, BookingStatus.PENDING),
        (BookingStatus.CANCELLED, BookingStatus.CONFIRMED),
        (BookingStatus.CANCELLED, BookingStatus.CANCELLED),
        (BookingStatus.PENDING, BookingStatus.PENDING),
    ],
)
def test_rejected_transitions(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidStatusTransition) as exc_info:
        ensure_transition(current, target)
    assert exc_info.value.status_code == 409


def test_transitions_accept_stored_strings():
    """Rows store the plain value; the table works on it directly."""
    assert ensure_transition("pending", "confirmed") is BookingStatus.CONFIRMED


def test_only_live_bookings_hold_capacity():
    assert ACTIVE_STATUSES == {BookingStatus.PENDING, BookingStatus.CONFIRMED}
    assert BookingStatus.PENDING.holds_capacity
    assert BookingStatus.CONFIRMED.holds_capacity
    assert not BookingStatus.CANCELLED.holds_capacity


def test_cancelled_is_the_only_terminal_status():
    assert BookingStatus.CANCELLED.is_terminal
    assert not BookingStatus.PENDING.is_terminal
    assert not BookingStatus.CONFIRMED.is_terminal


def test_unknown_status_is_rejected():
    with pytest.raises(ValueError):
        ensure_transition("pending", "refunded")
