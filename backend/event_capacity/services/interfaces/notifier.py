"""
Notification sender interface.
Allows swapping delivery backends without touching booking logic.
"""

from abc import ABC, abstractmethod

from event_capacity.models.booking import Booking
from event_capacity.models.event import Event
from event_capacity.models.user import User

EMAIL = "email"
WHATSAPP = "whatsapp"


class NotificationSender(ABC):
    """
    Interface for booking notification backends.

    Implementations:
    - LogNotificationSender: structured log line per channel
    - DisabledNotificationSender: delivers nothing

    Senders are only ever called after the booking transaction committed.
    """

    @abstractmethod
    async def booking_reserved(self, booking: Booking, event: Event, user: User) -> set[str]:
        """
        Tell the user their spots are held.

        Returns:
            The channels that were delivered (subset of {"email", "whatsapp"})
        """
        pass

    @abstractmethod
    async def booking_cancelled(self, booking: Booking, event: Event, user: User) -> set[str]:
        """Tell the user their booking was cancelled and spots released."""
        pass
