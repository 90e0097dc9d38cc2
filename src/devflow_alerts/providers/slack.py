"""Slack notification provider (Web API, bot token)."""

from typing import Any, Dict, Optional

import httpx

from ..config import SlackProviderConfig
from ..exceptions import ProviderError
from ..models import Alert, NotificationChannel
from ..templating import RenderedMessage, TemplateRenderer
from .base import SEVERITY_COLORS, BaseNotificationProvider


class SlackNotificationProvider(BaseNotificationProvider):
    """Posts alerts to a Slack channel or user as a colored attachment."""

    channel = NotificationChannel.SLACK

    def __init__(
        self, config: SlackProviderConfig, renderer: Optional[TemplateRenderer] = None
    ):
        super().__init__(renderer)
        self.config = config

    async def validate_config(self) -> bool:
        if not self.config.bot_token:
            return False
        data = await self._call("auth.test", {})
        return bool(data.get("ok"))

    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        data = await self._call("chat.postMessage", self.build_payload(alert, recipient, message))
        if not data.get("ok"):
            raise ProviderError(
                f"Slack API error: {data.get('error', 'unknown_error')}",
                channel=self.channel.value,
            )
        return data.get("ts")

    def build_payload(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Dict[str, Any]:
        attachment = {
            "color": SEVERITY_COLORS.get(alert.severity, "#808080"),
            "title": message.subject,
            "text": message.body,
            "fields": [
                {"title": "Severity", "value": alert.severity.value.upper(), "short": True},
                {"title": "Type", "value": alert.type.value, "short": True},
                {"title": "Status", "value": alert.status.value, "short": True},
                {"title": "Alert ID", "value": alert.id, "short": True},
            ],
            "footer": "DevFlow Alerts",
            "ts": int(alert.triggered_at.timestamp()),
        }
        return {
            "channel": recipient,
            "username": self.config.username,
            "text": message.subject,
            "attachments": [attachment],
        }

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.api_base_url.rstrip('/')}/{method}"
        headers = {"Authorization": f"Bearer {self.config.bot_token}"}
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()
