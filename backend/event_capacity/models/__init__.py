from event_capacity.models.user import User
from event_capacity.models.event import Event
from event_capacity.models.booking import Booking

__all__ = ["User", "Event", "Booking"]
