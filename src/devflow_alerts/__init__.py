"""
DevFlow alerting.

Evaluates declarative alert rules against productivity and quality metrics,
manages the resulting alerts through their lifecycle, and delivers
notifications over email, Slack, Teams, in-app and webhook channels.
"""

from .bootstrap import AlertingSystem, build_system
from .config import Settings, get_settings
from .engine import RuleEngine
from .events import EventEmitter
from .models import (
    Alert,
    AlertCondition,
    AlertContext,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricData,
    MLAnomalyResult,
    NotificationChannel,
    NotificationDelivery,
    NotificationTemplate,
)
from .services import (
    AlertFatigueService,
    AlertService,
    NotificationDispatcher,
    NotificationService,
)

__version__ = "0.1.0"

__all__ = [
    "Alert",
    "AlertCondition",
    "AlertContext",
    "AlertFatigueService",
    "AlertRule",
    "AlertService",
    "AlertSeverity",
    "AlertStatus",
    "AlertType",
    "AlertingSystem",
    "EventEmitter",
    "MLAnomalyResult",
    "MetricData",
    "NotificationChannel",
    "NotificationDelivery",
    "NotificationDispatcher",
    "NotificationService",
    "NotificationTemplate",
    "RuleEngine",
    "Settings",
    "build_system",
    "get_settings",
]
