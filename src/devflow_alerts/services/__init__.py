"""Alert lifecycle, fatigue and notification services."""

from .alert_service import AlertService
from .dispatcher import NotificationDispatcher
from .fatigue_service import AlertFatigueService
from .notification_service import NotificationService

__all__ = [
    "AlertFatigueService",
    "AlertService",
    "NotificationDispatcher",
    "NotificationService",
]
