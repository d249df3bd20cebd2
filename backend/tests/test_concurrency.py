"""
Concurrency tests: many writers racing for the same event row, and
writers on different events staying out of each other's way.

Run against PostgreSQL (TEST_DATABASE_URL) to exercise SELECT ... FOR UPDATE;
on SQLite the same code path serializes on BEGIN IMMEDIATE.
"""

import asyncio
import os

import pytest
from sqlalchemy import select

from event_capacity.core.config import get_settings
from event_capacity.core.exceptions import CapacityExceeded, DuplicateBooking, LockTimeout
from event_capacity.domain.booking_status import BookingStatus
from event_capacity.models.booking import Booking
from event_capacity.models.event import Event
from event_capacity.services.capacity_service import CapacityManager

ON_POSTGRES = os.environ.get("TEST_DATABASE_URL", "").startswith("postgresql")


@pytest.mark.asyncio
async def test_concurrent_reservations_never_overbook(manager, make_user, make_event):
    """20 users race for 5 spots: exactly 5 win, the rest see CapacityExceeded."""
    capacity, contenders = 5, 20
    event = await make_event(capacity=capacity)
    users = [await make_user() for _ in range(contenders)]

    results = await asyncio.gather(
        *(manager.reserve(event.id, user.id, 1) for user in users),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Booking)]
    rejections = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(successes) == capacity
    assert len(rejections) == contenders - capacity

    availability = await manager.get_availability(event.id)
    assert availability.available_spots == 0

    audit = await manager.audit(event.id)
    assert audit.consistent
    assert audit.committed_attendees == capacity


@pytest.mark.asyncio
async def test_concurrent_multi_spot_reservations(manager, make_user, make_event):
    """Mixed group sizes never take more than capacity in total."""
    event = await make_event(capacity=12)
    users = [await make_user() for _ in range(10)]

    results = await asyncio.gather(
        *(manager.reserve(event.id, user.id, 1 + i % 3) for i, user in enumerate(users)),
        return_exceptions=True,
    )

    assert all(isinstance(r, (Booking, CapacityExceeded)) for r in results)
    taken = sum(r.attendee_count for r in results if isinstance(r, Booking))
    assert taken <= 12

    audit = await manager.audit(event.id)
    assert audit.consistent
    assert audit.committed_attendees == taken


@pytest.mark.asyncio
async def test_same_user_double_submit(manager, test_user, test_event):
    """A user hammering the book button ends up with one booking."""
    results = await asyncio.gather(
        *(manager.reserve(test_event.id, test_user.id, 2) for _ in range(8)),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, Booking)]
    duplicates = [r for r in results if isinstance(r, DuplicateBooking)]
    assert len(successes) == 1
    assert len(duplicates) == 7
    assert (await manager.get_availability(test_event.id)).available_spots == 98


@pytest.mark.asyncio
async def test_concurrent_cancellations_release_once(manager, test_user, test_event):
    booking = await manager.reserve(test_event.id, test_user.id, 4)

    results = await asyncio.gather(*(manager.cancel(booking.id) for _ in range(6)))

    assert sum(1 for r in results if r.changed) == 1
    assert sum(r.spots_released for r in results) == 4
    assert (await manager.get_availability(test_event.id)).available_spots == 100


@pytest.mark.asyncio
async def test_capacity_change_races_with_reservations(manager, make_user, make_event):
    """Capacity edits and bookings serialize on the same row lock."""
    event = await make_event(capacity=10)
    users = [await make_user() for _ in range(8)]

    results = await asyncio.gather(
        manager.adjust_capacity(event.id, 6),
        *(manager.reserve(event.id, user.id, 1) for user in users),
        return_exceptions=True,
    )

    booked = [r for r in results if isinstance(r, Booking)]
    audit = await manager.audit(event.id)
    assert audit.consistent
    assert audit.committed_attendees == len(booked)
    assert audit.available_spots >= 0
    assert all(b.status == BookingStatus.PENDING for b in booked)


@pytest.mark.asyncio
@pytest.mark.skipif(not ON_POSTGRES, reason="needs PostgreSQL row locks (set TEST_DATABASE_URL)")
async def test_lock_on_one_event_does_not_block_another(session_factory, test_user, make_event):
    """While event A's row is locked, a reservation on event B still completes."""
    locked, free = await make_event(), await make_event()
    impatient = CapacityManager(
        session_factory, settings=get_settings().model_copy(update={"DB_LOCK_TIMEOUT_MS": 300})
    )

    async with session_factory() as holder:
        async with holder.begin():
            await holder.execute(select(Event.id).where(Event.id == locked.id).with_for_update())

            booking = await asyncio.wait_for(impatient.reserve(free.id, test_user.id, 1), timeout=5)
            assert booking.event_id == free.id

            # The held lock is real: the same manager cannot get past it on A
            with pytest.raises(LockTimeout):
                await impatient.reserve(locked.id, test_user.id, 1)

    assert (await impatient.get_availability(free.id)).available_spots == 99
    assert (await impatient.get_availability(locked.id)).available_spots == 100
