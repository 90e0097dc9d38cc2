"""Generic JSON webhook notification provider."""

from typing import Any, Dict, Optional

import httpx

from ..config import WebhookProviderConfig
from ..exceptions import ConfigurationError
from ..models import Alert, NotificationChannel, utcnow
from ..templating import RenderedMessage, TemplateRenderer
from .base import BaseNotificationProvider


class WebhookNotificationProvider(BaseNotificationProvider):
    """
    Posts a JSON envelope with the alert and the rendered message.

    The recipient is the target URL; non-URL recipients fall back to the
    configured default URL and are carried in the payload.
    """

    channel = NotificationChannel.WEBHOOK

    def __init__(
        self,
        config: Optional[WebhookProviderConfig] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        super().__init__(renderer)
        self.config = config or WebhookProviderConfig()

    async def validate_config(self) -> bool:
        # Recipients may carry their own URLs, so a missing default is valid
        return self.config.url is None or self.config.url.startswith(
            ("https://", "http://")
        )

    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        url = self._resolve_url(recipient)
        payload = self.build_payload(alert, recipient, message)
        headers = {"Content-Type": "application/json", **self.config.headers}

        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()

        return response.headers.get("X-Message-Id")

    def build_payload(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Dict[str, Any]:
        return {
            "event": "alert",
            "recipient": recipient,
            "subject": message.subject,
            "body": message.body,
            "alert": alert.to_dict(),
            "sentAt": utcnow().isoformat(),
        }

    def _resolve_url(self, recipient: str) -> str:
        if recipient.startswith(("https://", "http://")):
            return recipient
        if self.config.url:
            return self.config.url
        raise ConfigurationError(
            f"No webhook URL for recipient '{recipient}'", config_key="webhook.url"
        )
