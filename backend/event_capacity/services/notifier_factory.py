"""
Notification backend factory.
Configures which notification sender the booking handlers use.
"""

from typing import Optional

from event_capacity.core.config import get_settings
from event_capacity.services.interfaces.notifier import NotificationSender
from event_capacity.services.interfaces.disabled_notifier import DisabledNotificationSender
from event_capacity.services.notification_service import LogNotificationSender


def build_notifier(backend: str) -> NotificationSender:
    """
    Backend selection via NOTIFICATION_BACKEND:
    - log: LogNotificationSender (default)
    - disabled: DisabledNotificationSender
    """
    if backend == "log":
        return LogNotificationSender()
    if backend == "disabled":
        return DisabledNotificationSender()
    raise ValueError(f"Unknown notification backend: {backend}")


_notifier: Optional[NotificationSender] = None


def get_notifier() -> NotificationSender:
    """Get notification sender singleton."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier(get_settings().NOTIFICATION_BACKEND)
    return _notifier
