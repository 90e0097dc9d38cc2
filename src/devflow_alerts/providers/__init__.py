"""Notification providers, one per channel."""

from .base import SEVERITY_COLORS, BaseNotificationProvider
from .email import EmailNotificationProvider
from .in_app import InAppNotificationProvider
from .slack import SlackNotificationProvider
from .teams import TeamsNotificationProvider
from .webhook import WebhookNotificationProvider

__all__ = [
    "SEVERITY_COLORS",
    "BaseNotificationProvider",
    "EmailNotificationProvider",
    "InAppNotificationProvider",
    "SlackNotificationProvider",
    "TeamsNotificationProvider",
    "WebhookNotificationProvider",
]
