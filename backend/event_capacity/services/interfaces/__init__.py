"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notifier import NotificationSender, EMAIL, WHATSAPP
from .disabled_notifier import DisabledNotificationSender

__all__ = ['NotificationSender', 'DisabledNotificationSender', 'EMAIL', 'WHATSAPP']
