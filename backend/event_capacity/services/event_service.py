"""
Event service handling operator CRUD and listings.

Capacity changes on existing events go through the capacity manager;
this module creates events (with every spot available), edits their
descriptive fields, deletes events nobody holds a booking for, and reads them.

Slug uniqueness is checked before writing for a friendly error, but the
unique index is what decides: a violation at flush is reported as SlugTaken
too, so two operators racing for the same slug get a 409, not a 500.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from event_capacity.core.config import get_settings
from event_capacity.core.exceptions import EventHasActiveBookings, EventNotFound, SlugTaken, ValidationError
from event_capacity.db.errors import is_unique_violation, translate_db_errors
from event_capacity.db.session import apply_lock_timeout
from event_capacity.domain.booking_status import ACTIVE_STATUSES
from event_capacity.models.booking import Booking
from event_capacity.models.event import LIMITED_AVAILABILITY_RATIO, Event
from event_capacity.schemas.event import EventCreate, EventFilters, EventUpdate, TimeFrame
from event_capacity.core.logging import get_logger

logger = get_logger(__name__)

# Columns an edit may not clear
_REQUIRED_FIELDS = ("title", "slug", "price", "event_date", "is_published")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _future_event_date(value: datetime) -> datetime:
    event_date = _as_utc(value)
    if event_date <= datetime.now(timezone.utc):
        raise ValidationError("Event date must be in the future")
    return event_date


async def _slug_in_use(db: AsyncSession, slug: str, exclude_id: Optional[int] = None) -> bool:
    query = select(Event.id).where(Event.slug == slug)
    if exclude_id is not None:
        query = query.where(Event.id != exclude_id)
    existing = await db.execute(query)
    return existing.first() is not None


async def _flush_event(db: AsyncSession, slug: str) -> None:
    try:
        await db.flush()
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise SlugTaken(slug) from exc
        raise


async def _lock_event(db: AsyncSession, event_id: int) -> Event:
    """Lock the event row for an edit, same lock order as the capacity manager."""
    with translate_db_errors(event_id=event_id):
        await apply_lock_timeout(db, get_settings().DB_LOCK_TIMEOUT_MS)
        result = await db.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    event = result.scalar_one_or_none()
    if event is None:
        raise EventNotFound(event_id)
    return event


async def create_event(db: AsyncSession, event_data: EventCreate) -> Event:
    """Create a new event with full availability."""
    event_date = _future_event_date(event_data.event_date)

    if await _slug_in_use(db, event_data.slug):
        raise SlugTaken(event_data.slug)

    event = Event(
        title=event_data.title,
        slug=event_data.slug,
        description=event_data.description,
        price=event_data.price,
        event_date=event_date,
        venue_name=event_data.venue_name,
        venue_city=event_data.venue_city,
        capacity=event_data.capacity,
        available_spots=event_data.capacity,  # All spots available initially
        is_published=event_data.is_published,
    )
    db.add(event)
    await _flush_event(db, event_data.slug)
    await db.refresh(event)

    logger.info("event_created", event_id=event.id, slug=event.slug, capacity=event.capacity)
    return event


async def update_event(db: AsyncSession, event_id: int, event_data: EventUpdate) -> Event:
    """Apply a partial edit to an event's descriptive fields and publish flag."""
    changes = event_data.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No fields to update")
    for field in _REQUIRED_FIELDS:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty")

    if "event_date" in changes:
        changes["event_date"] = _future_event_date(changes["event_date"])

    event = await _lock_event(db, event_id)

    slug = changes.get("slug")
    if slug is not None and slug != event.slug and await _slug_in_use(db, slug, exclude_id=event_id):
        raise SlugTaken(slug)

    for field, value in changes.items():
        setattr(event, field, value)
    await _flush_event(db, event.slug)
    await db.refresh(event)

    logger.info("event_updated", event_id=event_id, fields=sorted(changes))
    return event


async def delete_event(db: AsyncSession, event_id: int) -> None:
    """
    Delete an event and its cancelled bookings.
    Refused while any booking still holds spots.
    """
    await _lock_event(db, event_id)

    active = (
        await db.execute(
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.event_id == event_id,
                Booking.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
        )
    ).scalar_one()
    if active:
        raise EventHasActiveBookings(event_id, active)

    removed = await db.execute(delete(Booking).where(Booking.event_id == event_id))
    await db.execute(delete(Event).where(Event.id == event_id))
    await db.flush()

    logger.info("event_deleted", event_id=event_id, cancelled_bookings_removed=removed.rowcount)


async def get_event(db: AsyncSession, event_id: int) -> Event:
    """Get a single event by ID."""
    event = await db.get(Event, event_id)
    if not event:
        raise EventNotFound(event_id)
    return event


def time_frame_bounds(
    time_frame: TimeFrame, now: Optional[datetime] = None
) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Date window for a listing time frame as (start, end); end is exclusive.
    "this_week" is the next seven days, "this_month" runs to the start of
    next calendar month (UTC).
    """
    now = now or datetime.now(timezone.utc)
    if time_frame == "upcoming":
        return now, None
    if time_frame == "this_week":
        return now, now + timedelta(days=7)
    if time_frame == "this_month":
        if now.month == 12:
            month_end = now.replace(year=now.year + 1, month=1, day=1)
        else:
            month_end = now.replace(month=now.month + 1, day=1)
        return now, month_end.replace(hour=0, minute=0, second=0, microsecond=0)
    return None, None


async def list_events(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    filters: Optional[EventFilters] = None,
) -> tuple[list[Event], int]:
    """
    List published events with pagination.
    Uses the ix_events_published_date index for the common listing query.
    """
    filters = filters or EventFilters()
    if (
        filters.min_price is not None
        and filters.max_price is not None
        and filters.min_price > filters.max_price
    ):
        raise ValidationError("min_price cannot be greater than max_price")

    query = select(Event).where(Event.is_published.is_(True))

    start, end = time_frame_bounds(filters.time_frame)
    if start is not None:
        query = query.where(Event.event_date >= start)
    if end is not None:
        query = query.where(Event.event_date < end)

    if filters.city:
        query = query.where(func.lower(Event.venue_city) == filters.city)
    if filters.min_price is not None:
        query = query.where(Event.price >= filters.min_price)
    if filters.max_price is not None:
        query = query.where(Event.price <= filters.max_price)

    if filters.availability == "available":
        query = query.where(Event.available_spots > 0)
    elif filters.availability == "limited":
        query = query.where(
            Event.available_spots > 0,
            Event.available_spots < Event.capacity * LIMITED_AVAILABILITY_RATIO,
        )
    if filters.min_available_spots is not None:
        query = query.where(Event.available_spots >= filters.min_available_spots)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    events_query = (
        query
        .order_by(Event.event_date.asc(), Event.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(events_query)
    events = list(result.scalars().all())

    return events, total
