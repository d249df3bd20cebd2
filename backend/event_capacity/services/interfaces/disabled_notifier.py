"""
Disabled notification backend - delivers nothing.
"""

from event_capacity.services.interfaces.notifier import NotificationSender


class DisabledNotificationSender(NotificationSender):
    """
    Use when:
    - Running load tests
    - Another system owns user messaging
    """

    async def booking_reserved(self, booking, event, user) -> set[str]:
        return set()

    async def booking_cancelled(self, booking, event, user) -> set[str]:
        return set()
