"""
Payment provider webhook.

succeeded -> confirm the pending booking (no capacity change)
failed    -> cancel, reason payment_failed (spots released)
refunded  -> cancel, reason refunded (spots released)

Every outcome is idempotent, so provider redeliveries are safe.
"""

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_capacity.api.deps import get_capacity_manager, verify_webhook_secret
from event_capacity.db.session import get_session_factory
from event_capacity.schemas.booking import BookingResponse, PaymentWebhook
from event_capacity.services.cache_service import invalidate_event_cache
from event_capacity.services.capacity_service import CancelReason, CapacityManager
from event_capacity.services.notification_service import dispatch_booking_notification
from event_capacity.services.notifier_factory import get_notifier
from event_capacity.services.retry import retry_on_lock_timeout
from event_capacity.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"], dependencies=[Depends(verify_webhook_secret)])

_CANCEL_REASONS = {
    "failed": CancelReason.PAYMENT_FAILED,
    "refunded": CancelReason.REFUNDED,
}


@router.post("/webhook", response_model=BookingResponse)
async def payment_webhook(
    payload: PaymentWebhook,
    background_tasks: BackgroundTasks,
    manager: CapacityManager = Depends(get_capacity_manager),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    logger.info(
        "payment_webhook_received",
        booking_id=payload.booking_id,
        outcome=payload.outcome,
        payment_reference=payload.payment_reference,
    )

    if payload.outcome == "succeeded":
        return await retry_on_lock_timeout(lambda: manager.confirm(payload.booking_id))

    reason = _CANCEL_REASONS[payload.outcome]
    result = await retry_on_lock_timeout(
        lambda: manager.cancel(payload.booking_id, reason=reason)
    )
    if result.changed:
        background_tasks.add_task(invalidate_event_cache)
        background_tasks.add_task(
            dispatch_booking_notification,
            session_factory,
            get_notifier(),
            payload.booking_id,
            "cancelled",
        )
    return result.booking
