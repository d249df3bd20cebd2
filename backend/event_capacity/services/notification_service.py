"""
Booking notifications, dispatched after commit.

The booking handlers schedule `dispatch_booking_notification` as a
background task once reserve()/cancel() has returned, so no notification
I/O ever runs while an event row is locked. Delivery failures are logged
and never affect the booking.
"""

from typing import Literal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_capacity.core.logging import get_logger
from event_capacity.models.booking import Booking
from event_capacity.models.event import Event
from event_capacity.models.user import User
from event_capacity.services.interfaces.notifier import EMAIL, WHATSAPP, NotificationSender

logger = get_logger(__name__)

NotificationKind = Literal["reserved", "cancelled"]


class LogNotificationSender(NotificationSender):
    """
    Emits one structured log line per channel.

    Email always goes out; WhatsApp only when the user has a phone number.
    Message templates belong to the platform's messaging service.
    """

    def _channels(self, user: User) -> set[str]:
        return {EMAIL, WHATSAPP} if user.phone else {EMAIL}

    async def booking_reserved(self, booking: Booking, event: Event, user: User) -> set[str]:
        channels = self._channels(user)
        for channel in sorted(channels):
            logger.info(
                "notification_sent",
                kind="booking_reserved",
                channel=channel,
                booking_id=booking.id,
                event_id=event.id,
                event_title=event.title,
                attendees=booking.attendee_count,
                total_price=str(booking.total_price),
            )
        return channels

    async def booking_cancelled(self, booking: Booking, event: Event, user: User) -> set[str]:
        channels = self._channels(user)
        for channel in sorted(channels):
            logger.info(
                "notification_sent",
                kind="booking_cancelled",
                channel=channel,
                booking_id=booking.id,
                event_id=event.id,
                reason=booking.cancel_reason,
            )
        return channels


async def dispatch_booking_notification(
    session_factory: async_sessionmaker[AsyncSession],
    sender: NotificationSender,
    booking_id: int,
    kind: NotificationKind,
) -> set[str]:
    """Load the booking, notify, and record which reservation channels went out."""
    try:
        async with session_factory() as session:
            booking = await session.get(Booking, booking_id)
            if booking is None:
                logger.warning("notification_skipped", booking_id=booking_id, reason="missing")
                return set()
            event = await session.get(Event, booking.event_id)
            user = await session.get(User, booking.user_id)

        if kind == "reserved":
            delivered = await sender.booking_reserved(booking, event, user)
        else:
            delivered = await sender.booking_cancelled(booking, event, user)

        if kind == "reserved" and delivered:
            flags = {}
            if EMAIL in delivered:
                flags["email_notified"] = True
            if WHATSAPP in delivered:
                flags["whatsapp_notified"] = True
            async with session_factory() as session:
                async with session.begin():
                    await session.execute(
                        update(Booking).where(Booking.id == booking_id).values(**flags)
                    )
        return delivered
    except Exception as e:
        logger.error("notification_failed", booking_id=booking_id, kind=kind, error=str(e))
        return set()
