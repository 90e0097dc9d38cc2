"""
Interfaces for alert persistence and notification delivery.

The core consumes storage and delivery only through these contracts. All
repository methods are async and fail fast: errors propagate to the caller
and nothing here retries implicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import (
    Alert,
    AlertRule,
    AlertType,
    FatigueMetrics,
    FeedbackAnalysis,
    InAppNotification,
    MaintenanceWindow,
    NotificationChannel,
    NotificationDelivery,
    NotificationResult,
    NotificationTemplate,
)


class AlertRepository(ABC):
    """Storage for alerts."""

    @abstractmethod
    async def save_alert(self, alert: Alert) -> None:
        """Persist a new alert."""

    @abstractmethod
    async def update_alert(self, alert_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to an alert."""

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        """Get an alert by id."""

    @abstractmethod
    async def get_active_alerts(self) -> List[Alert]:
        """Get alerts whose status is active."""

    @abstractmethod
    async def get_alert_history(self) -> List[Alert]:
        """Get every stored alert."""

    @abstractmethod
    async def delete_alert(self, alert_id: str) -> bool:
        """Delete an alert."""


class AlertRuleRepository(ABC):
    """Storage for alert rules."""

    @abstractmethod
    async def save_rule(self, rule: AlertRule) -> None:
        """Persist a new rule."""

    @abstractmethod
    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to a rule."""

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        """Get a rule by id."""

    @abstractmethod
    async def get_rules(self, filters: Optional[Dict[str, Any]] = None) -> List[AlertRule]:
        """Get rules, optionally filtered (``{"enabled": bool}``)."""

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule."""


class NotificationRepository(ABC):
    """Storage for delivery records."""

    @abstractmethod
    async def save_delivery(self, delivery: NotificationDelivery) -> None:
        """Persist a new delivery."""

    @abstractmethod
    async def update_delivery(self, delivery_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to a delivery."""

    @abstractmethod
    async def get_delivery(self, delivery_id: str) -> Optional[NotificationDelivery]:
        """Get a delivery by id."""

    @abstractmethod
    async def get_deliveries(self, alert_id: str) -> List[NotificationDelivery]:
        """Get every delivery for an alert."""

    @abstractmethod
    async def get_failed_deliveries(self, max_retries: int) -> List[NotificationDelivery]:
        """Get failed deliveries with ``retry_count < max_retries``."""


class TemplateRepository(ABC):
    """Storage for notification templates."""

    @abstractmethod
    async def get_template(
        self, channel: NotificationChannel, alert_type: AlertType
    ) -> Optional[NotificationTemplate]:
        """Get the template for a channel and alert type."""

    @abstractmethod
    async def get_template_by_id(self, template_id: str) -> Optional[NotificationTemplate]:
        """Get a template by id."""

    @abstractmethod
    async def save_template(self, template: NotificationTemplate) -> None:
        """Persist a new template."""

    @abstractmethod
    async def update_template(self, template_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to a template."""

    @abstractmethod
    async def delete_template(self, template_id: str) -> bool:
        """Delete a template."""


class InAppNotificationRepository(ABC):
    """Storage for in-app notifications."""

    @abstractmethod
    async def save_notification(self, notification: InAppNotification) -> None:
        """Persist a notification."""

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[InAppNotification]:
        """Get a notification by id."""

    @abstractmethod
    async def get_user_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[InAppNotification]:
        """Get a user's notifications, newest first."""

    @abstractmethod
    async def update_notification(
        self, notification_id: str, updates: Dict[str, Any]
    ) -> None:
        """Apply a partial update to a notification."""

    @abstractmethod
    async def delete_notification(self, notification_id: str) -> bool:
        """Delete a notification."""

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        """Delete notifications whose ``expires_at`` is before ``now``."""


class FatigueRepository(ABC):
    """Storage for fatigue metrics, maintenance windows and feedback analysis."""

    @abstractmethod
    async def save_fatigue_metrics(self, metrics: FatigueMetrics) -> None:
        """Persist (insert or replace) a user's fatigue metrics."""

    @abstractmethod
    async def get_fatigue_metrics(self, user_id: str) -> Optional[FatigueMetrics]:
        """Get a user's fatigue metrics."""

    @abstractmethod
    async def update_fatigue_metrics(self, user_id: str, updates: Dict[str, Any]) -> None:
        """Apply a partial update to a user's fatigue metrics."""

    @abstractmethod
    async def save_maintenance_window(self, window: MaintenanceWindow) -> None:
        """Persist (insert or replace) a maintenance window."""

    @abstractmethod
    async def get_maintenance_window(self, window_id: str) -> Optional[MaintenanceWindow]:
        """Get a maintenance window by id."""

    @abstractmethod
    async def get_maintenance_windows(self) -> List[MaintenanceWindow]:
        """Get every maintenance window."""

    @abstractmethod
    async def delete_maintenance_window(self, window_id: str) -> bool:
        """Delete a maintenance window."""

    @abstractmethod
    async def save_feedback_analysis(self, analysis: FeedbackAnalysis) -> None:
        """Persist (insert or replace) a feedback analysis."""

    @abstractmethod
    async def get_feedback_analysis(
        self, user_id: str, alert_type: AlertType
    ) -> Optional[FeedbackAnalysis]:
        """Get the feedback analysis for a user and alert type."""


class NotificationProvider(ABC):
    """Contract every notification channel implements."""

    @abstractmethod
    async def send(
        self, alert: Alert, recipient: str, template: NotificationTemplate
    ) -> NotificationResult:
        """Deliver an alert to one recipient; transport errors become results."""

    @abstractmethod
    async def validate_config(self) -> bool:
        """Check that the provider is usable."""

    @abstractmethod
    def get_channel_type(self) -> NotificationChannel:
        """Get the channel this provider serves."""
