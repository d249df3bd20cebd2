"""
Tests for post-commit booking notifications.
"""

import pytest
from httpx import AsyncClient

from event_capacity.services.interfaces import DisabledNotificationSender, NotificationSender
from event_capacity.services.notification_service import (
    LogNotificationSender,
    dispatch_booking_notification,
)
from event_capacity.services.notifier_factory import build_notifier


class RecordingSender(NotificationSender):
    def __init__(self):
        self.calls = []

    async def booking_reserved(self, booking, event, user):
        self.calls.append(("reserved", booking.id, event.id, user.id))
        return {"email"}

    async def booking_cancelled(self, booking, event, user):
        self.calls.append(("cancelled", booking.id, event.id, user.id))
        return {"email"}


class BrokenSender(NotificationSender):
    async def booking_reserved(self, booking, event, user):
        raise RuntimeError("smtp down")

    async def booking_cancelled(self, booking, event, user):
        raise RuntimeError("smtp down")


@pytest.mark.asyncio
async def test_reserved_notification_marks_channels(
    session_factory, manager, test_user, test_event, load_booking
):
    """test_user has a phone number, so both channels go out."""
    booking = await manager.reserve(test_event.id, test_user.id, 1)

    delivered = await dispatch_booking_notification(
        session_factory, LogNotificationSender(), booking.id, "reserved"
    )

    assert delivered == {"email", "whatsapp"}
    stored = await load_booking(booking.id)
    assert stored.email_notified is True
    assert stored.whatsapp_notified is True


@pytest.mark.asyncio
async def test_no_whatsapp_without_phone(session_factory, manager, other_user, test_event, load_booking):
    booking = await manager.reserve(test_event.id, other_user.id, 1)

    delivered = await dispatch_booking_notification(
        session_factory, LogNotificationSender(), booking.id, "reserved"
    )

    assert delivered == {"email"}
    stored = await load_booking(booking.id)
    assert stored.email_notified is True
    assert stored.whatsapp_notified is False


@pytest.mark.asyncio
async def test_cancelled_notification_leaves_flags(session_factory, manager, other_user, test_event, load_booking):
    booking = await manager.reserve(test_event.id, other_user.id, 1)
    await manager.cancel(booking.id)
    sender = RecordingSender()

    await dispatch_booking_notification(session_factory, sender, booking.id, "cancelled")

    assert sender.calls == [("cancelled", booking.id, test_event.id, other_user.id)]
    assert (await load_booking(booking.id)).email_notified is False


@pytest.mark.asyncio
async def test_failed_delivery_never_raises(session_factory, manager, test_user, test_event, load_booking):
    booking = await manager.reserve(test_event.id, test_user.id, 1)

    delivered = await dispatch_booking_notification(session_factory, BrokenSender(), booking.id, "reserved")

    assert delivered == set()
    stored = await load_booking(booking.id)
    assert stored.status == "pending"
    assert stored.email_notified is False


@pytest.mark.asyncio
async def test_missing_booking_is_skipped(session_factory):
    assert await dispatch_booking_notification(
        session_factory, RecordingSender(), 99999, "reserved"
    ) == set()


@pytest.mark.asyncio
async def test_disabled_sender_delivers_nothing(session_factory, manager, test_user, test_event, load_booking):
    booking = await manager.reserve(test_event.id, test_user.id, 1)

    delivered = await dispatch_booking_notification(
        session_factory, DisabledNotificationSender(), booking.id, "reserved"
    )

    assert delivered == set()
    assert (await load_booking(booking.id)).email_notified is False


@pytest.mark.asyncio
async def test_booking_endpoint_notifies_after_commit(client: AsyncClient, auth_headers, test_event, load_booking):
    response = await client.post(
        "/api/v1/bookings/",
        json={"event_id": test_event.id, "attendee_count": 1},
        headers=auth_headers,
    )
    assert response.status_code == 201

    stored = await load_booking(response.json()["id"])
    assert stored.email_notified is True


def test_build_notifier():
    assert isinstance(build_notifier("log"), LogNotificationSender)
    assert isinstance(build_notifier("disabled"), DisabledNotificationSender)
    with pytest.raises(ValueError):
        build_notifier("carrier-pigeon")
