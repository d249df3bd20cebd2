"""
Operator endpoints: event creation, edits and deletion, capacity changes,
ledger audit.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from event_capacity.api.deps import get_capacity_manager, require_admin
from event_capacity.db.session import get_db
from event_capacity.domain.booking_status import BookingStatus
from event_capacity.schemas.booking import BookingResponse
from event_capacity.schemas.capacity import AvailabilityResponse, CapacityAuditResponse, CapacityUpdate
from event_capacity.schemas.event import EventCreate, EventResponse, EventUpdate
from event_capacity.services.cache_service import invalidate_event_cache
from event_capacity.services.capacity_service import CapacityManager
from event_capacity.services.event_service import create_event, delete_event, update_event
from event_capacity.services.retry import retry_on_lock_timeout

router = APIRouter(prefix="/admin/events", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event_endpoint(
    event_data: EventCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Create an event with available_spots equal to capacity."""
    event = await create_event(db, event_data)
    await db.commit()
    background_tasks.add_task(invalidate_event_cache)
    return event


@router.patch("/{event_id}", response_model=EventResponse)
async def update_event_endpoint(
    event_id: int,
    event_data: EventUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Edit descriptive fields or publish/unpublish. Capacity has its own endpoint."""
    event = await update_event(db, event_id, event_data)
    await db.commit()
    background_tasks.add_task(invalidate_event_cache)
    return event


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def delete_event_endpoint(
    event_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Delete an event. 409 while any booking is pending or confirmed."""
    await delete_event(db, event_id)
    await db.commit()
    background_tasks.add_task(invalidate_event_cache)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{event_id}/capacity", response_model=AvailabilityResponse)
async def update_capacity_endpoint(
    event_id: int,
    update: CapacityUpdate,
    background_tasks: BackgroundTasks,
    manager: CapacityManager = Depends(get_capacity_manager),
):
    """
    Change capacity. available_spots becomes capacity minus committed attendees;
    409 if the new capacity is below what is already booked.
    """
    availability = await retry_on_lock_timeout(
        lambda: manager.adjust_capacity(event_id, update.capacity)
    )
    background_tasks.add_task(invalidate_event_cache)
    return AvailabilityResponse.model_validate(availability)


@router.get("/{event_id}/audit", response_model=CapacityAuditResponse)
async def audit_event_endpoint(
    event_id: int,
    manager: CapacityManager = Depends(get_capacity_manager),
):
    audit = await manager.audit(event_id)
    return CapacityAuditResponse.model_validate(audit)


@router.post("/{event_id}/reconcile", response_model=CapacityAuditResponse)
async def reconcile_event_endpoint(
    event_id: int,
    background_tasks: BackgroundTasks,
    manager: CapacityManager = Depends(get_capacity_manager),
):
    """Recompute available_spots from the booking ledger."""
    audit = await manager.reconcile(event_id)
    if audit.corrected:
        background_tasks.add_task(invalidate_event_cache)
    return CapacityAuditResponse.model_validate(audit)


@router.get("/{event_id}/bookings", response_model=list[BookingResponse])
async def list_event_bookings_endpoint(
    event_id: int,
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    manager: CapacityManager = Depends(get_capacity_manager),
):
    return await manager.list_event_bookings(event_id, status=status_filter)
