"""
Public event endpoints. Only the listing is cached in Redis.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from event_capacity.api.deps import get_capacity_manager
from event_capacity.db.session import get_db
from event_capacity.schemas.capacity import AvailabilityResponse, CapacityCheckResponse
from event_capacity.schemas.event import (
    AvailabilityFilter, EventFilters, EventListResponse, EventResponse, TimeFrame,
)
from event_capacity.services.cache_service import get_cached_events, resolve_event_list_key, set_cached_events
from event_capacity.services.capacity_service import CapacityManager
from event_capacity.services.event_service import get_event, list_events
from event_capacity.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/events", tags=["Events"])


@router.get("/", response_model=EventListResponse)
async def list_events_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    time_frame: Optional[TimeFrame] = Query(None),
    availability: Optional[AvailabilityFilter] = Query(None),
    min_available_spots: Optional[int] = Query(None, ge=0),
    city: Optional[str] = Query(None, max_length=100),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    upcoming_only: bool = Query(True),
    available_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    """
    List published events with pagination and filters.

    `upcoming_only` and `available_only` are the older spellings of
    `time_frame=all|upcoming` and `availability=available`; the explicit
    parameters win when both are given.
    Results are cached in Redis; bookings and event changes invalidate the cache.
    """
    filters = EventFilters(
        time_frame=time_frame or ("upcoming" if upcoming_only else "all"),
        availability=availability or ("available" if available_only else "all"),
        min_available_spots=min_available_spots,
        city=city,
        min_price=min_price,
        max_price=max_price,
    )

    key = await resolve_event_list_key(page, page_size, filters)
    cached = await get_cached_events(key)
    if cached:
        logger.info("events_list_cache_hit", page=page)
        cached["cached"] = True
        return EventListResponse(**cached)

    events, total = await list_events(db, page, page_size, filters)

    response_data = {
        "events": [EventResponse.model_validate(e).model_dump(mode="json") for e in events],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_events(key, response_data)

    return EventListResponse(**response_data)


@router.get("/{event_id}", response_model=EventResponse)
async def get_event_endpoint(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single event by ID. Not cached (needs real-time spot counts)."""
    return await get_event(db, event_id)


@router.get("/{event_id}/availability", response_model=AvailabilityResponse)
async def get_availability_endpoint(
    event_id: int,
    manager: CapacityManager = Depends(get_capacity_manager),
):
    availability = await manager.get_availability(event_id)
    return AvailabilityResponse.model_validate(availability)


@router.get("/{event_id}/capacity-check", response_model=CapacityCheckResponse)
async def check_capacity_endpoint(
    event_id: int,
    attendees: int = Query(..., ge=1),
    manager: CapacityManager = Depends(get_capacity_manager),
):
    """Advisory: whether `attendees` spots are free right now. Booking re-checks."""
    check = await manager.check_capacity(event_id, attendees)
    return CapacityCheckResponse.model_validate(check)
