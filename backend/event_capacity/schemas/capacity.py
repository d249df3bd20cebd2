"""
Schemas for capacity queries and operator capacity management.
"""

from pydantic import BaseModel, Field


class AvailabilityResponse(BaseModel):
    event_id: int
    capacity: int
    available_spots: int
    booked_spots: int
    is_sold_out: bool
    is_limited: bool

    model_config = {"from_attributes": True}


class CapacityCheckResponse(BaseModel):
    event_id: int
    requested: int
    available: bool
    available_spots: int
    capacity: int

    model_config = {"from_attributes": True}


class CapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=0, le=100000)


class CapacityAuditResponse(BaseModel):
    event_id: int
    capacity: int
    available_spots: int
    committed_attendees: int
    expected_available_spots: int
    drift: int
    consistent: bool
    corrected: bool = False

    model_config = {"from_attributes": True}
