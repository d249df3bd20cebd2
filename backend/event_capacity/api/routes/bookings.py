"""
Booking endpoints backed by the capacity manager.

Handlers retry lock timeouts a bounded number of times, then schedule
notifications and cache invalidation as background tasks so that they run
after the booking transaction has committed.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_capacity.api.deps import get_capacity_manager
from event_capacity.core.security import get_current_user_id
from event_capacity.db.session import get_session_factory
from event_capacity.domain.booking_status import BookingStatus
from event_capacity.schemas.booking import BookingCancelResponse, BookingCreate, BookingResponse
from event_capacity.schemas.capacity import AvailabilityResponse
from event_capacity.services.cache_service import invalidate_event_cache
from event_capacity.services.capacity_service import CancelReason, CapacityManager
from event_capacity.services.notification_service import dispatch_booking_notification
from event_capacity.services.notifier_factory import get_notifier
from event_capacity.services.retry import retry_on_lock_timeout

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_current_user_id),
    manager: CapacityManager = Depends(get_capacity_manager),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Reserve spots for an event.

    409 when the event lacks capacity or the user already holds a booking,
    503 with Retry-After when the event stayed locked through every retry.
    """
    booking = await retry_on_lock_timeout(
        lambda: manager.reserve(booking_data.event_id, user_id, booking_data.attendee_count)
    )
    background_tasks.add_task(invalidate_event_cache)
    background_tasks.add_task(
        dispatch_booking_notification, session_factory, get_notifier(), booking.id, "reserved"
    )
    return booking


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(get_current_user_id),
    manager: CapacityManager = Depends(get_capacity_manager),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Cancel a booking and release its spots. Repeating the call is harmless."""
    result = await retry_on_lock_timeout(
        lambda: manager.cancel(booking_id, user_id=user_id, reason=CancelReason.USER_REQUEST)
    )
    if result.changed:
        background_tasks.add_task(invalidate_event_cache)
        background_tasks.add_task(
            dispatch_booking_notification, session_factory, get_notifier(), booking_id, "cancelled"
        )

    return BookingCancelResponse(
        message="Booking cancelled successfully" if result.changed else "Booking was already cancelled",
        booking=BookingResponse.model_validate(result.booking),
        changed=result.changed,
        spots_released=result.spots_released,
        availability=AvailabilityResponse.model_validate(result.availability),
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(get_current_user_id),
    manager: CapacityManager = Depends(get_capacity_manager),
):
    """Get bookings for the authenticated user, newest first."""
    return await manager.list_user_bookings(user_id, status=status_filter, limit=limit, offset=offset)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: CapacityManager = Depends(get_capacity_manager),
):
    return await manager.get_booking(booking_id, user_id=user_id)
