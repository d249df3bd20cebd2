"""
Maps capacity errors to HTTP responses.

Body shape: {"detail": <message>, "code": <ErrorCode>}
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from event_capacity.core.config import get_settings
from event_capacity.core.exceptions import CapacityError, LockTimeout, StoreUnavailable
from event_capacity.core.logging import get_logger

logger = get_logger(__name__)


async def capacity_error_handler(request: Request, exc: CapacityError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_error", code=exc.code.value, error=exc.message)
    else:
        logger.info("request_rejected", code=exc.code.value, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )


async def lock_timeout_handler(request: Request, exc: LockTimeout) -> JSONResponse:
    settings = get_settings()
    retry_after = max(1, round(settings.DB_LOCK_TIMEOUT_MS / 1000))
    logger.warning("request_lock_timeout", event_id=exc.event_id)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code.value},
        headers={"Retry-After": str(retry_after)},
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("request_store_unavailable", error=exc.message, cause=repr(exc.__cause__))
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Service temporarily unavailable", "code": exc.code.value},
    )


EXCEPTION_HANDLERS = {
    LockTimeout: lock_timeout_handler,
    StoreUnavailable: store_unavailable_handler,
    CapacityError: capacity_error_handler,
}


def register_exception_handlers(app) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
