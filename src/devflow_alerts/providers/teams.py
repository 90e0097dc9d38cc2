"""Microsoft Teams notification provider (incoming webhook MessageCard)."""

from typing import Any, Dict, Optional

import httpx

from ..config import TeamsProviderConfig
from ..models import Alert, NotificationChannel, new_id
from ..templating import RenderedMessage, TemplateRenderer
from .base import SEVERITY_COLORS, BaseNotificationProvider


class TeamsNotificationProvider(BaseNotificationProvider):
    """
    Posts alerts to Teams as a MessageCard.

    A recipient that is an ``http(s)`` URL is used as the webhook; any other
    recipient is posted to the configured webhook and named in the card.
    """

    channel = NotificationChannel.TEAMS

    def __init__(
        self, config: TeamsProviderConfig, renderer: Optional[TemplateRenderer] = None
    ):
        super().__init__(renderer)
        self.config = config

    async def validate_config(self) -> bool:
        return self.config.webhook_url.startswith(("https://", "http://"))

    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        is_url = recipient.startswith(("https://", "http://"))
        url = recipient if is_url else self.config.webhook_url
        card = self.build_card(alert, message, None if is_url else recipient)

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            response = await client.post(url, json=card)
            response.raise_for_status()
        # Incoming webhooks do not return a message id
        return new_id()

    def build_card(
        self, alert: Alert, message: RenderedMessage, mention: Optional[str] = None
    ) -> Dict[str, Any]:
        facts = [
            {"name": "Severity", "value": alert.severity.value.upper()},
            {"name": "Type", "value": alert.type.value},
            {"name": "Status", "value": alert.status.value},
            {"name": "Triggered", "value": alert.triggered_at.isoformat()},
        ]
        if mention:
            facts.append({"name": "Recipient", "value": mention})

        card: Dict[str, Any] = {
            "@type": "MessageCard",
            "@context": "https://schema.org/extensions",
            "themeColor": SEVERITY_COLORS.get(alert.severity, "#808080").lstrip("#"),
            "summary": message.subject,
            "sections": [
                {
                    "activityTitle": message.subject,
                    "activitySubtitle": f"Alert {alert.id}",
                    "text": message.body,
                    "facts": facts,
                }
            ],
        }

        actions = [
            {
                "@type": "OpenUri",
                "name": rec.title,
                "targets": [{"os": "default", "uri": rec.action_url}],
            }
            for rec in alert.recommendations
            if rec.action_url
        ]
        if actions:
            card["potentialAction"] = actions
        return card
