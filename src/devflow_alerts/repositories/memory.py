"""
In-memory repository implementations.

Records are copied on the way in and out so that callers observe the same
isolation a real store gives them: mutating a returned object never changes
what is stored.
"""

import copy
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..interfaces import (
    AlertRepository,
    AlertRuleRepository,
    FatigueRepository,
    InAppNotificationRepository,
    NotificationRepository,
    TemplateRepository,
)
from ..models import (
    Alert,
    AlertRule,
    AlertStatus,
    AlertType,
    DeliveryStatus,
    FatigueMetrics,
    FeedbackAnalysis,
    InAppNotification,
    MaintenanceWindow,
    NotificationChannel,
    NotificationDelivery,
    NotificationTemplate,
)


class InMemoryAlertRepository(AlertRepository):
    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}

    async def save_alert(self, alert: Alert) -> None:
        self._alerts[alert.id] = copy.deepcopy(alert)

    async def update_alert(self, alert_id: str, updates: Dict[str, Any]) -> None:
        existing = self._alerts.get(alert_id)
        if existing is None:
            raise KeyError(f"Alert {alert_id} not found")
        self._alerts[alert_id] = replace(existing, **copy.deepcopy(updates))

    async def get_alert(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert else None

    async def get_active_alerts(self) -> List[Alert]:
        return [
            copy.deepcopy(a)
            for a in self._alerts.values()
            if a.status == AlertStatus.ACTIVE
        ]

    async def get_alert_history(self) -> List[Alert]:
        return [copy.deepcopy(a) for a in self._alerts.values()]

    async def delete_alert(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None


class InMemoryAlertRuleRepository(AlertRuleRepository):
    def __init__(self) -> None:
        self._rules: Dict[str, AlertRule] = {}

    async def save_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = copy.deepcopy(rule)

    async def update_rule(self, rule_id: str, updates: Dict[str, Any]) -> None:
        existing = self._rules.get(rule_id)
        if existing is None:
            raise KeyError(f"Rule {rule_id} not found")
        self._rules[rule_id] = replace(existing, **copy.deepcopy(updates))

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        rule = self._rules.get(rule_id)
        return copy.deepcopy(rule) if rule else None

    async def get_rules(self, filters: Optional[Dict[str, Any]] = None) -> List[AlertRule]:
        filters = filters or {}
        rules = list(self._rules.values())
        if filters.get("enabled") is not None:
            rules = [r for r in rules if r.enabled == filters["enabled"]]
        if filters.get("type") is not None:
            rules = [r for r in rules if r.type == filters["type"]]
        return [copy.deepcopy(r) for r in rules]

    async def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None


class InMemoryNotificationRepository(NotificationRepository):
    def __init__(self) -> None:
        self._deliveries: Dict[str, NotificationDelivery] = {}

    async def save_delivery(self, delivery: NotificationDelivery) -> None:
        self._deliveries[delivery.id] = copy.deepcopy(delivery)

    async def update_delivery(self, delivery_id: str, updates: Dict[str, Any]) -> None:
        existing = self._deliveries.get(delivery_id)
        if existing is None:
            raise KeyError(f"Delivery {delivery_id} not found")
        self._deliveries[delivery_id] = replace(existing, **copy.deepcopy(updates))

    async def get_delivery(self, delivery_id: str) -> Optional[NotificationDelivery]:
        delivery = self._deliveries.get(delivery_id)
        return copy.deepcopy(delivery) if delivery else None

    async def get_deliveries(self, alert_id: str) -> List[NotificationDelivery]:
        return [
            copy.deepcopy(d) for d in self._deliveries.values() if d.alert_id == alert_id
        ]

    async def get_failed_deliveries(self, max_retries: int) -> List[NotificationDelivery]:
        return [
            copy.deepcopy(d)
            for d in self._deliveries.values()
            if d.status == DeliveryStatus.FAILED and d.retry_count < max_retries
        ]


class InMemoryTemplateRepository(TemplateRepository):
    def __init__(self) -> None:
        self._templates: Dict[str, NotificationTemplate] = {}

    async def get_template(
        self, channel: NotificationChannel, alert_type: AlertType
    ) -> Optional[NotificationTemplate]:
        for template in self._templates.values():
            if template.channel == channel and template.alert_type == alert_type:
                return copy.deepcopy(template)
        return None

    async def get_template_by_id(self, template_id: str) -> Optional[NotificationTemplate]:
        template = self._templates.get(template_id)
        return copy.deepcopy(template) if template else None

    async def save_template(self, template: NotificationTemplate) -> None:
        self._templates[template.id] = copy.deepcopy(template)

    async def update_template(self, template_id: str, updates: Dict[str, Any]) -> None:
        existing = self._templates.get(template_id)
        if existing is None:
            raise KeyError(f"Template {template_id} not found")
        self._templates[template_id] = replace(existing, **copy.deepcopy(updates))

    async def delete_template(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None


class InMemoryInAppNotificationRepository(InAppNotificationRepository):
    def __init__(self) -> None:
        self._notifications: Dict[str, InAppNotification] = {}

    async def save_notification(self, notification: InAppNotification) -> None:
        self._notifications[notification.id] = copy.deepcopy(notification)

    async def get_notification(self, notification_id: str) -> Optional[InAppNotification]:
        notification = self._notifications.get(notification_id)
        return copy.deepcopy(notification) if notification else None

    async def get_user_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[InAppNotification]:
        # Newest first; equal timestamps keep the most recently saved first
        matches = [
            n
            for n in reversed(list(self._notifications.values()))
            if n.user_id == user_id and not (unread_only and n.read)
        ]
        matches.sort(key=lambda n: n.created_at, reverse=True)
        if limit is not None:
            matches = matches[:limit]
        return [copy.deepcopy(n) for n in matches]

    async def update_notification(
        self, notification_id: str, updates: Dict[str, Any]
    ) -> None:
        existing = self._notifications.get(notification_id)
        if existing is None:
            raise KeyError(f"Notification {notification_id} not found")
        self._notifications[notification_id] = replace(existing, **copy.deepcopy(updates))

    async def delete_notification(self, notification_id: str) -> bool:
        return self._notifications.pop(notification_id, None) is not None

    async def delete_expired(self, now: datetime) -> int:
        expired = [
            n.id
            for n in self._notifications.values()
            if n.expires_at is not None and n.expires_at < now
        ]
        for notification_id in expired:
            del self._notifications[notification_id]
        return len(expired)


class InMemoryFatigueRepository(FatigueRepository):
    def __init__(self) -> None:
        self._metrics: Dict[str, FatigueMetrics] = {}
        self._windows: Dict[str, MaintenanceWindow] = {}
        self._analyses: Dict[Tuple[str, AlertType], FeedbackAnalysis] = {}

    async def save_fatigue_metrics(self, metrics: FatigueMetrics) -> None:
        self._metrics[metrics.user_id] = copy.deepcopy(metrics)

    async def get_fatigue_metrics(self, user_id: str) -> Optional[FatigueMetrics]:
        metrics = self._metrics.get(user_id)
        return copy.deepcopy(metrics) if metrics else None

    async def update_fatigue_metrics(self, user_id: str, updates: Dict[str, Any]) -> None:
        existing = self._metrics.get(user_id)
        if existing is None:
            raise KeyError(f"Fatigue metrics for {user_id} not found")
        self._metrics[user_id] = replace(existing, **copy.deepcopy(updates))

    async def save_maintenance_window(self, window: MaintenanceWindow) -> None:
        self._windows[window.id] = copy.deepcopy(window)

    async def get_maintenance_window(self, window_id: str) -> Optional[MaintenanceWindow]:
        window = self._windows.get(window_id)
        return copy.deepcopy(window) if window else None

    async def get_maintenance_windows(self) -> List[MaintenanceWindow]:
        return [copy.deepcopy(w) for w in self._windows.values()]

    async def delete_maintenance_window(self, window_id: str) -> bool:
        return self._windows.pop(window_id, None) is not None

    async def save_feedback_analysis(self, analysis: FeedbackAnalysis) -> None:
        self._analyses[(analysis.user_id, analysis.alert_type)] = copy.deepcopy(analysis)

    async def get_feedback_analysis(
        self, user_id: str, alert_type: AlertType
    ) -> Optional[FeedbackAnalysis]:
        analysis = self._analyses.get((user_id, alert_type))
        return copy.deepcopy(analysis) if analysis else None
