"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from event_capacity.domain.booking_status import BookingStatus
from event_capacity.schemas.capacity import AvailabilityResponse


class BookingCreate(BaseModel):
    event_id: int
    # Upper bound is enforced by the capacity manager (BOOKING_MAX_ATTENDEES)
    attendee_count: int = Field(default=1, gt=0)


class BookingResponse(BaseModel):
    id: int
    user_id: int
    event_id: int
    attendee_count: int
    status: BookingStatus
    total_price: Decimal
    cancel_reason: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking: BookingResponse
    changed: bool
    spots_released: int
    availability: AvailabilityResponse


class PaymentWebhook(BaseModel):
    booking_id: int
    outcome: Literal["succeeded", "failed", "refunded"]
    payment_reference: Optional[str] = Field(None, max_length=255)
