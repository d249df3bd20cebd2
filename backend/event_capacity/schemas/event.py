"""
Pydantic schemas for event-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"

TimeFrame = Literal["all", "upcoming", "this_week", "this_month"]
AvailabilityFilter = Literal["all", "available", "limited"]


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    price: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    event_date: datetime
    venue_name: Optional[str] = Field(None, max_length=255)
    venue_city: Optional[str] = Field(None, max_length=100)
    capacity: int = Field(..., ge=0, le=100000)
    is_published: bool = False


class EventUpdate(BaseModel):
    """
    Partial edit of an event. Only fields present in the payload change.
    Capacity is not editable here: it goes through the capacity endpoint,
    which recomputes available spots under the event lock.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = Field(None, min_length=1, max_length=255, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    event_date: Optional[datetime] = None
    venue_name: Optional[str] = Field(None, max_length=255)
    venue_city: Optional[str] = Field(None, max_length=100)
    is_published: Optional[bool] = None

    model_config = {"extra": "forbid"}


class EventFilters(BaseModel):
    """Listing filters. Field order is the order they appear in cache keys."""

    time_frame: TimeFrame = "upcoming"
    availability: AvailabilityFilter = "all"
    min_available_spots: Optional[int] = Field(None, ge=0)
    city: Optional[str] = None
    min_price: Optional[Decimal] = Field(None, ge=0)
    max_price: Optional[Decimal] = Field(None, ge=0)

    model_config = {"frozen": True}

    @field_validator("city")
    @classmethod
    def normalize_city(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip().lower() or None


class EventResponse(BaseModel):
    id: int
    title: str
    slug: str
    description: Optional[str]
    price: Decimal
    event_date: datetime
    venue_name: Optional[str]
    venue_city: Optional[str]
    capacity: int
    available_spots: int
    booked_spots: int
    is_sold_out: bool
    is_limited: bool
    is_published: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class EventListResponse(BaseModel):
    events: list[EventResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False
