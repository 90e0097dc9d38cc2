"""Routes alert lifecycle events to the notification service."""

from __future__ import annotations

from typing import Dict, List, Optional

import structlog

from ..config import DispatcherConfig
from ..engine.rule_engine import ML_ANOMALY_RULE_ID
from ..models import Alert, EscalationStep, NotificationChannel, NotificationDelivery
from .alert_service import AlertService
from .notification_service import NotificationService

logger = structlog.get_logger(__name__, component="dispatcher")


class NotificationDispatcher:
    """
    Subscribes to an ``AlertService`` and sends notifications for its alerts.

    New alerts go to the actions of the rule that raised them; alerts without
    a rule (anomaly detections) or whose rule has no actions use the default
    routes from ``DispatcherConfig``. Escalations go to the escalation step's
    channels and recipients.
    """

    def __init__(
        self,
        alert_service: AlertService,
        notification_service: NotificationService,
        config: Optional[DispatcherConfig] = None,
    ):
        self.alert_service = alert_service
        self.notification_service = notification_service
        self.config = config or DispatcherConfig()
        self._attached = False

    def attach(self) -> None:
        if self._attached:
            return
        self.alert_service.on("alertCreated", self.on_alert_created)
        self.alert_service.on("alertEscalated", self.on_alert_escalated)
        self._attached = True

    def detach(self) -> None:
        self.alert_service.off("alertCreated", self.on_alert_created)
        self.alert_service.off("alertEscalated", self.on_alert_escalated)
        self._attached = False

    async def on_alert_created(self, alert: Alert) -> List[NotificationDelivery]:
        channels, recipients = await self._routes_for(alert)
        if not channels:
            logger.debug("No notification route for alert", alert_id=alert.id)
            return []
        return await self.notification_service.send_notification(alert, channels, recipients)

    async def on_alert_escalated(
        self, alert: Alert, step: EscalationStep
    ) -> List[NotificationDelivery]:
        if not step.channels:
            return []
        logger.info(
            "Sending escalation notifications",
            alert_id=alert.id,
            level=alert.escalation_level,
        )
        return await self.notification_service.send_notification(
            alert, step.channels, step.recipients
        )

    async def _routes_for(self, alert: Alert):
        channels: List[NotificationChannel] = []
        recipients: Dict[NotificationChannel, List[str]] = {}

        if alert.rule_id != ML_ANOMALY_RULE_ID:
            rule = await self.alert_service.rule_repository.get_rule(alert.rule_id)
            for action in rule.actions if rule else []:
                if action.channel not in channels:
                    channels.append(action.channel)
                recipients.setdefault(action.channel, []).extend(action.recipients)

        if not channels:
            channels = list(self.config.default_channels)
            recipients = {c: list(r) for c, r in self.config.default_recipients.items()}
        return channels, recipients
