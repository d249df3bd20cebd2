from event_capacity.schemas.capacity import (
    AvailabilityResponse, CapacityCheckResponse, CapacityUpdate, CapacityAuditResponse,
)
from event_capacity.schemas.event import (
    EventCreate, EventUpdate, EventFilters, EventResponse, EventListResponse,
)
from event_capacity.schemas.booking import (
    BookingCreate, BookingResponse, BookingCancelResponse, PaymentWebhook,
)

__all__ = [
    "AvailabilityResponse", "CapacityCheckResponse", "CapacityUpdate", "CapacityAuditResponse",
    "EventCreate", "EventUpdate", "EventFilters", "EventResponse", "EventListResponse",
    "BookingCreate", "BookingResponse", "BookingCancelResponse", "PaymentWebhook",
]
