"""
Booking capacity manager.

CONCURRENCY STRATEGY: Pessimistic row locking, one short transaction per change
=============================================================================

Problem:
  Two users try to book the last spot simultaneously.
  Both read available_spots=1, both decrement to 0, both succeed.
  Result: Overbooking.

Solution:
  The event row is the serialization point. Every operation that changes
  capacity runs in its own transaction and starts with

      SELECT ... FROM events WHERE id = :event_id FOR UPDATE

  1. Lock the event row (concurrent writers of the same event wait here;
     writers of other events never contend)
  2. Re-read available_spots under the lock
  3. Check, then write the booking and the new available_spots together
  4. Commit, which releases the lock

  The invariant kept by every operation:

      capacity - available_spots == SUM(attendee_count) over pending/confirmed
      0 <= available_spots <= capacity   (also a DB CHECK constraint)

  Lock order is always event row, then booking row, so operations on the
  same event cannot deadlock each other. The wait for the lock is bounded by
  the store's lock_timeout (SET LOCAL on PostgreSQL); a timeout surfaces as
  LockTimeout and callers may retry it with backoff (see services.retry).

  No I/O other than the database happens while the lock is held.
  Notifications are the caller's job, after commit.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_capacity.core.config import Settings, get_settings
from event_capacity.core.exceptions import (
    BookingNotFound,
    CapacityBelowCommitted,
    CapacityExceeded,
    DuplicateBooking,
    EventNotBookable,
    EventNotFound,
    LockTimeout,
    StoreUnavailable,
    UserNotFound,
    ValidationError,
)
from event_capacity.core.logging import get_logger
from event_capacity.core.metrics import (
    booking_confirmations,
    lock_wait_seconds,
    reconcile_corrections,
    record_booking_attempt,
    record_cancellation,
    record_capacity_adjustment,
)
from event_capacity.db.base import utcnow
from event_capacity.db.errors import translate_db_errors
from event_capacity.db.session import apply_lock_timeout
from event_capacity.domain.booking_status import ACTIVE_STATUSES, BookingStatus, ensure_transition
from event_capacity.models.booking import Booking
from event_capacity.models.event import LIMITED_AVAILABILITY_RATIO, Event
from event_capacity.models.user import User

logger = get_logger(__name__)

_ACTIVE_STATUS_VALUES = [status.value for status in ACTIVE_STATUSES]


class CancelReason(str, Enum):
    USER_REQUEST = "user_request"
    PAYMENT_FAILED = "payment_failed"
    REFUNDED = "refunded"
    OPERATOR = "operator"


@dataclass(frozen=True)
class Availability:
    event_id: int
    capacity: int
    available_spots: int

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

    @classmethod
    def from_event(cls, event: Event) -> "Availability":
        return cls(event_id=event.id, capacity=event.capacity, available_spots=event.available_spots)


@dataclass(frozen=True)
class CapacityCheck:
    event_id: int
    requested: int
    available_spots: int
    capacity: int

    @property
    def available(self) -> bool:
        return self.requested <= self.available_spots


@dataclass(frozen=True)
class CapacityAudit:
    event_id: int
    capacity: int
    available_spots: int
    committed_attendees: int
    corrected: bool = False

    @property
    def expected_available_spots(self) -> int:
        return max(0, self.capacity - self.committed_attendees)

    @property
    def drift(self) -> int:
        """available_spots minus what the committed bookings say it should be."""
        return self.available_spots - (self.capacity - self.committed_attendees)

    @property
    def consistent(self) -> bool:
        return self.drift == 0 and 0 <= self.available_spots <= self.capacity


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    changed: bool
    spots_released: int
    availability: Availability


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CapacityManager:
    """
    Owns every change to an event's available_spots.

    Each public mutator opens its own transaction from `session_factory`;
    callers never pass a session in, so a lock can never be held across
    unrelated work in the caller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(
        self,
        event_id: Optional[int] = None,
        duplicate_of: Optional[tuple[int, int]] = None,
    ) -> AsyncIterator[AsyncSession]:
        with translate_db_errors(event_id=event_id, duplicate_of=duplicate_of):
            async with self._session_factory() as session:
                async with session.begin():
                    await self._apply_lock_timeout(session)
                    yield session

    async def _apply_lock_timeout(self, session: AsyncSession) -> None:
        await apply_lock_timeout(session, self._settings.DB_LOCK_TIMEOUT_MS)

    async def _lock_event(self, session: AsyncSession, event_id: int) -> Event:
        started = time.perf_counter()
        result = await session.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        lock_wait_seconds.observe(time.perf_counter() - started)

        if event is None:
            raise EventNotFound(event_id)
        return event

    async def _lock_booking(self, session: AsyncSession, booking_id: int) -> Booking:
        result = await session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    async def _resolve_event_id(self, booking_id: int, user_id: Optional[int] = None) -> int:
        """Find which event row to lock for a booking. Unlocked read."""
        with translate_db_errors():
            async with self._session_factory() as session:
                result = await session.execute(
                    select(Booking.event_id, Booking.user_id).where(Booking.id == booking_id)
                )
                row = result.one_or_none()

        # Someone else's booking is reported as missing, not forbidden
        if row is None or (user_id is not None and row.user_id != user_id):
            raise BookingNotFound(booking_id)
        return row.event_id

    @staticmethod
    async def _committed_attendees(session: AsyncSession, event_id: int) -> int:
        result = await session.execute(
            select(func.coalesce(func.sum(Booking.attendee_count), 0)).where(
                Booking.event_id == event_id,
                Booking.status.in_(_ACTIVE_STATUS_VALUES),
            )
        )
        return int(result.scalar_one())

    @staticmethod
    async def _has_active_booking(session: AsyncSession, event_id: int, user_id: int) -> bool:
        result = await session.execute(
            select(Booking.id).where(
                Booking.event_id == event_id,
                Booking.user_id == user_id,
                Booking.status.in_(_ACTIVE_STATUS_VALUES),
            )
        )
        return result.first() is not None

    def _validate_attendee_count(self, attendee_count: int) -> None:
        if attendee_count < 1:
            raise ValidationError("Number of attendees must be at least 1")
        if attendee_count > self._settings.BOOKING_MAX_ATTENDEES:
            raise ValidationError(
                f"Maximum {self._settings.BOOKING_MAX_ATTENDEES} attendees per booking"
            )

    @staticmethod
    def _ensure_bookable(event: Event) -> None:
        if not event.is_published:
            raise EventNotBookable(event.id, "event is not published")
        if _as_utc(event.event_date) <= datetime.now(timezone.utc):
            raise EventNotBookable(event.id, "event has already started")

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    async def reserve(
        self,
        event_id: int,
        user_id: int,
        attendee_count: int,
        status: BookingStatus = BookingStatus.PENDING,
    ) -> Booking:
        """
        Reserve `attendee_count` spots for a user.

        Raises CapacityExceeded, DuplicateBooking, EventNotFound,
        EventNotBookable, UserNotFound, ValidationError, LockTimeout or
        StoreUnavailable. On any error nothing is written.
        """
        self._validate_attendee_count(attendee_count)
        initial_status = BookingStatus(status)
        if not initial_status.holds_capacity:
            raise ValidationError("A booking must start as pending or confirmed")

        try:
            async with self._transaction(event_id, duplicate_of=(event_id, user_id)) as session:
                event = await self._lock_event(session, event_id)
                self._ensure_bookable(event)

                user = await session.get(User, user_id)
                if user is None or not user.is_active:
                    raise UserNotFound(user_id)

                if await self._has_active_booking(session, event_id, user_id):
                    raise DuplicateBooking(event_id, user_id)

                if attendee_count > event.available_spots:
                    raise CapacityExceeded(event_id, attendee_count, event.available_spots)

                now = utcnow()
                booking = Booking(
                    user_id=user_id,
                    event_id=event_id,
                    attendee_count=attendee_count,
                    status=initial_status.value,
                    total_price=(Decimal(event.price) * attendee_count).quantize(Decimal("0.01")),
                    confirmed_at=now if initial_status is BookingStatus.CONFIRMED else None,
                    created_at=now,
                    updated_at=now,
                )
                session.add(booking)
                event.available_spots = event.available_spots - attendee_count
                await session.flush()
                remaining = event.available_spots
        except CapacityExceeded as exc:
            record_booking_attempt("capacity_exceeded")
            logger.warning(
                "booking_failed_no_spots",
                event_id=event_id,
                user_id=user_id,
                requested=attendee_count,
                available=exc.available,
            )
            raise
        except DuplicateBooking:
            record_booking_attempt("duplicate")
            logger.warning("booking_failed_duplicate", event_id=event_id, user_id=user_id)
            raise
        except LockTimeout:
            record_booking_attempt("lock_timeout")
            logger.warning("booking_failed_lock_timeout", event_id=event_id, user_id=user_id)
            raise
        except StoreUnavailable as exc:
            record_booking_attempt("error")
            logger.error(
                "booking_failed_store_unavailable", event_id=event_id, user_id=user_id, error=exc.message
            )
            raise

        record_booking_attempt("reserved")
        logger.info(
            "booking_reserved",
            booking_id=booking.id,
            user_id=user_id,
            event_id=event_id,
            attendees=attendee_count,
            status=booking.status,
            available_spots=remaining,
        )
        return booking

    async def cancel(
        self,
        booking_id: int,
        user_id: Optional[int] = None,
        reason: CancelReason = CancelReason.USER_REQUEST,
    ) -> CancellationResult:
        """
        Cancel a booking and return its spots to the event.

        Idempotent: cancelling an already cancelled booking changes nothing
        and releases no spots. When `user_id` is given the booking must
        belong to that user, otherwise BookingNotFound.
        """
        reason = CancelReason(reason)
        event_id = await self._resolve_event_id(booking_id, user_id)

        async with self._transaction(event_id) as session:
            event = await self._lock_event(session, event_id)
            booking = await self._lock_booking(session, booking_id)

            if booking.status == BookingStatus.CANCELLED:
                changed, released = False, 0
            else:
                booking.status = ensure_transition(booking.status, BookingStatus.CANCELLED).value
                booking.cancelled_at = utcnow()
                booking.cancel_reason = reason.value

                restored = event.available_spots + booking.attendee_count
                if restored > event.capacity:
                    # Only reachable if rows were edited outside this manager
                    logger.warning(
                        "available_spots_clamped",
                        event_id=event_id,
                        booking_id=booking_id,
                        computed=restored,
                        capacity=event.capacity,
                    )
                    restored = event.capacity
                released = restored - event.available_spots
                event.available_spots = restored
                await session.flush()
                changed = True

            availability = Availability.from_event(event)

        record_cancellation(reason.value, changed)
        if changed:
            logger.info(
                "booking_cancelled",
                booking_id=booking_id,
                event_id=event_id,
                reason=reason.value,
                spots_released=released,
                available_spots=availability.available_spots,
            )
        else:
            logger.info("booking_cancel_noop", booking_id=booking_id, event_id=event_id)

        return CancellationResult(
            booking=booking,
            changed=changed,
            spots_released=released,
            availability=availability,
        )

    async def confirm(self, booking_id: int) -> Booking:
        """
        Move a pending booking to confirmed after payment succeeds.

        Spots were already taken at reservation time, so capacity is not
        touched. Confirming twice is a no-op; confirming a cancelled booking
        raises InvalidStatusTransition.
        """
        event_id = await self._resolve_event_id(booking_id)

        async with self._transaction(event_id) as session:
            await self._lock_event(session, event_id)
            booking = await self._lock_booking(session, booking_id)

            if booking.status == BookingStatus.CONFIRMED:
                logger.info("booking_confirm_noop", booking_id=booking_id)
                return booking

            booking.status = ensure_transition(booking.status, BookingStatus.CONFIRMED).value
            booking.confirmed_at = utcnow()
            await session.flush()

        booking_confirmations.inc()
        logger.info("booking_confirmed", booking_id=booking_id, event_id=event_id)
        return booking

    async def adjust_capacity(self, event_id: int, new_capacity: int) -> Availability:
        """
        Operator change of an event's capacity.

        available_spots is recomputed from the committed bookings rather
        than shifted by the delta, so earlier drift cannot carry over.
        Shrinking below the committed attendee count is rejected.
        """
        if new_capacity < 0:
            raise ValidationError("Capacity cannot be negative")

        async with self._transaction(event_id) as session:
            event = await self._lock_event(session, event_id)
            committed = await self._committed_attendees(session, event_id)

            if new_capacity < committed:
                record_capacity_adjustment(applied=False)
                logger.warning(
                    "capacity_adjust_rejected",
                    event_id=event_id,
                    requested=new_capacity,
                    committed=committed,
                )
                raise CapacityBelowCommitted(event_id, new_capacity, committed)

            previous = event.capacity
            event.capacity = new_capacity
            event.available_spots = new_capacity - committed
            await session.flush()
            availability = Availability.from_event(event)

        record_capacity_adjustment(applied=True)
        logger.info(
            "capacity_adjusted",
            event_id=event_id,
            previous_capacity=previous,
            capacity=new_capacity,
            committed=committed,
            available_spots=availability.available_spots,
        )
        return availability

    async def reconcile(self, event_id: int) -> CapacityAudit:
        """
        Repair available_spots from the booking ledger.

        Never cancels bookings: an overbooked event is clamped to zero
        available spots and reported as inconsistent.
        """
        async with self._transaction(event_id) as session:
            event = await self._lock_event(session, event_id)
            committed = await self._committed_attendees(session, event_id)
            expected = max(0, event.capacity - committed)
            previous = event.available_spots

            corrected = previous != expected
            if corrected:
                event.available_spots = expected
                await session.flush()

            audit = CapacityAudit(
                event_id=event_id,
                capacity=event.capacity,
                available_spots=event.available_spots,
                committed_attendees=committed,
                corrected=corrected,
            )

        if committed > audit.capacity:
            logger.error(
                "event_overbooked",
                event_id=event_id,
                capacity=audit.capacity,
                committed=committed,
            )
        if corrected:
            reconcile_corrections.inc()
            logger.warning(
                "capacity_reconciled",
                event_id=event_id,
                previous_available=previous,
                available_spots=expected,
                committed=committed,
            )
        return audit

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def audit(self, event_id: int) -> CapacityAudit:
        # Taking the row lock gives a snapshot no writer can change mid-audit
        async with self._transaction(event_id) as session:
            event = await self._lock_event(session, event_id)
            committed = await self._committed_attendees(session, event_id)
            return CapacityAudit(
                event_id=event_id,
                capacity=event.capacity,
                available_spots=event.available_spots,
                committed_attendees=committed,
            )

    async def get_availability(self, event_id: int) -> Availability:
        """Current availability read from the event row, never from a cache."""
        with translate_db_errors(event_id=event_id):
            async with self._session_factory() as session:
                event = await session.get(Event, event_id)
                if event is None:
                    raise EventNotFound(event_id)
                return Availability.from_event(event)

    async def check_capacity(self, event_id: int, requested: int) -> CapacityCheck:
        """Advisory check; reserve() re-checks under the row lock."""
        if requested < 1:
            raise ValidationError("Requested spots must be at least 1")
        availability = await self.get_availability(event_id)
        return CapacityCheck(
            event_id=event_id,
            requested=requested,
            available_spots=availability.available_spots,
            capacity=availability.capacity,
        )

    async def get_booking(self, booking_id: int, user_id: Optional[int] = None) -> Booking:
        with translate_db_errors():
            async with self._session_factory() as session:
                booking = await session.get(Booking, booking_id)
        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise BookingNotFound(booking_id)
        return booking

    async def list_user_bookings(
        self,
        user_id: int,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Booking]:
        query = select(Booking).where(Booking.user_id == user_id)
        if status is not None:
            query = query.where(Booking.status == BookingStatus(status).value)
        query = query.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).offset(offset)

        with translate_db_errors():
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())

    async def list_event_bookings(
        self,
        event_id: int,
        status: Optional[BookingStatus] = None,
    ) -> list[Booking]:
        query = select(Booking).where(Booking.event_id == event_id)
        if status is not None:
            query = query.where(Booking.status == BookingStatus(status).value)
        query = query.order_by(Booking.created_at.asc(), Booking.id.asc())

        with translate_db_errors(event_id=event_id):
            async with self._session_factory() as session:
                if await session.get(Event, event_id) is None:
                    raise EventNotFound(event_id)
                result = await session.execute(query)
                return list(result.scalars().all())
