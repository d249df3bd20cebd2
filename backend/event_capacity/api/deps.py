"""
Shared FastAPI dependencies.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_capacity.core.config import get_settings
from event_capacity.core.security import get_current_user_id
from event_capacity.db.session import get_session_factory
from event_capacity.models.user import User
from event_capacity.services.capacity_service import CapacityManager


def get_capacity_manager(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> CapacityManager:
    return CapacityManager(session_factory)


async def require_admin(
    user_id: int = Depends(get_current_user_id),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> int:
    # Closed before the handler runs: on SQLite an open session holds the
    # write lock the capacity manager needs.
    async with session_factory() as session:
        user = await session.get(User, user_id)
    if user is None or not user.is_active or not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return user_id


async def verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
) -> None:
    expected = get_settings().PAYMENT_WEBHOOK_SECRET
    if x_webhook_secret is None or not hmac.compare_digest(x_webhook_secret, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )
