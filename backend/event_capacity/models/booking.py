"""
Booking model: one user's reservation of N spots against one event.

Key design decisions:
- Partial unique index on (user_id, event_id) for non-cancelled rows: a user
  holds at most one live booking per event, but may re-book after cancelling
- Status is never deleted, only moved through the BookingStatus state machine
- total_price is computed once at reservation time and frozen
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy.orm import relationship

from event_capacity.db.base import Base, TimestampMixin
from event_capacity.domain.booking_status import BookingStatus

ACTIVE_BOOKING_PREDICATE = text("status <> 'cancelled'")


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    attendee_count = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    total_price = Column(Numeric(10, 2), nullable=False)
    cancel_reason = Column(String(32), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    email_notified = Column(Boolean, nullable=False, default=False)
    whatsapp_notified = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="bookings", lazy="raise")
    event = relationship("Event", back_populates="bookings", lazy="raise")

    __table_args__ = (
        Index(
            "uq_bookings_active_user_event",
            "user_id",
            "event_id",
            unique=True,
            postgresql_where=ACTIVE_BOOKING_PREDICATE,
            sqlite_where=ACTIVE_BOOKING_PREDICATE,
        ),
        Index("ix_bookings_status", "status"),
        CheckConstraint("attendee_count > 0", name="check_booking_attendee_count_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_booking_status"
        ),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, user={self.user_id}, event={self.event_id}, status={self.status})>"
