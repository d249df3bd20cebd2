"""
Event model with spot inventory tracking.

Key design decisions:
- `available_spots` is denormalized and authoritative: it is the row every
  reservation locks (SELECT ... FOR UPDATE) before checking and writing
- `capacity - available_spots` always equals the attendees held by pending
  and confirmed bookings
- CHECK constraints keep 0 <= available_spots <= capacity even if
  application logic is bypassed
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from event_capacity.db.base import Base, TimestampMixin

# Fewer than this share of spots left marks an event as "limited availability"
LIMITED_AVAILABILITY_RATIO = 0.2


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    event_date = Column(DateTime(timezone=True), nullable=False)
    venue_name = Column(String(255), nullable=True)
    venue_city = Column(String(100), nullable=True)
    capacity = Column(Integer, nullable=False)
    available_spots = Column(Integer, nullable=False)
    is_published = Column(Boolean, nullable=False, default=False)

    bookings = relationship("Booking", back_populates="event", lazy="raise")

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="check_capacity_non_negative"),
        CheckConstraint("available_spots >= 0", name="check_available_spots_non_negative"),
        CheckConstraint("available_spots <= capacity", name="check_available_lte_capacity"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        Index("ix_events_event_date", "event_date"),
        # Listing query: published events that still have spots, by date
        Index("ix_events_published_date", "is_published", "event_date"),
    )

    @property
    def booked_spots(self) -> int:
        return self.capacity - self.available_spots

    @property
    def is_sold_out(self) -> bool:
        return self.available_spots == 0

    @property
    def is_limited(self) -> bool:
        if self.capacity == 0 or self.available_spots == 0:
            return False
        return self.available_spots / self.capacity < LIMITED_AVAILABILITY_RATIO

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, title={self.title}, available={self.available_spots}/{self.capacity})>"
