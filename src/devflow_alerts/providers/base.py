"""Shared behaviour for notification providers."""

from abc import abstractmethod
from typing import Dict, Optional

import structlog

from ..interfaces import NotificationProvider
from ..models import (
    Alert,
    AlertSeverity,
    NotificationChannel,
    NotificationResult,
    NotificationTemplate,
    utcnow,
)
from ..templating import RenderedMessage, TemplateRenderer

logger = structlog.get_logger(__name__)

SEVERITY_COLORS: Dict[AlertSeverity, str] = {
    AlertSeverity.CRITICAL: "#FF0000",
    AlertSeverity.HIGH: "#FF8C00",
    AlertSeverity.MEDIUM: "#FFD700",
    AlertSeverity.LOW: "#36A64F",
}


class BaseNotificationProvider(NotificationProvider):
    """
    Base provider: renders the template, delivers, and reports the outcome.

    Subclasses implement ``_deliver`` and raise on any transport failure;
    ``send`` turns that into an unsuccessful ``NotificationResult``.
    """

    channel: NotificationChannel

    def __init__(self, renderer: Optional[TemplateRenderer] = None):
        self.renderer = renderer or TemplateRenderer()
        self._sent_count = 0
        self._failed_count = 0
        self._log = logger.bind(component=f"{self.channel.value}_provider")

    @property
    def sent_count(self) -> int:
        """Get count of successful sends."""
        return self._sent_count

    @property
    def failed_count(self) -> int:
        """Get count of failed sends."""
        return self._failed_count

    def get_channel_type(self) -> NotificationChannel:
        return self.channel

    async def send(
        self, alert: Alert, recipient: str, template: NotificationTemplate
    ) -> NotificationResult:
        try:
            message = self.renderer.render(template, alert)
            message_id = await self._deliver(alert, recipient, message)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._failed_count += 1
            self._log.error(
                "Notification send failed",
                alert_id=alert.id,
                recipient=recipient,
                error=str(e),
            )
            return NotificationResult(success=False, error=str(e))

        self._sent_count += 1
        self._log.info("Notification sent", alert_id=alert.id, recipient=recipient)
        return NotificationResult(
            success=True, message_id=message_id, delivered_at=utcnow()
        )

    @abstractmethod
    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        """Deliver a rendered message; return the transport's message id if any."""
