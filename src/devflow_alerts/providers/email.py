"""Email notification provider (SMTP)."""

import asyncio
import html
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from ..config import EmailProviderConfig
from ..models import Alert, NotificationChannel
from ..templating import RenderedMessage, TemplateRenderer
from .base import SEVERITY_COLORS, BaseNotificationProvider

_BREAK_TAGS = re.compile(r"<\s*(br|/p|/div|/li|/h[1-6]|/tr)\s*/?\s*>", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def html_to_text(body: str) -> str:
    """Derive a plain-text alternative from an HTML body."""
    text = _BREAK_TAGS.sub("\n", body)
    text = _TAGS.sub("", text)
    text = html.unescape(text)
    text = "\n".join(line.strip() for line in text.splitlines())
    return _BLANK_LINES.sub("\n\n", text).strip()


class EmailNotificationProvider(BaseNotificationProvider):
    """Sends alerts as multipart (HTML + plain text) email."""

    channel = NotificationChannel.EMAIL

    def __init__(
        self, config: EmailProviderConfig, renderer: Optional[TemplateRenderer] = None
    ):
        super().__init__(renderer)
        self.config = config

    async def validate_config(self) -> bool:
        """Check required settings, then open an SMTP session and issue NOOP."""
        if not self.config.host or not self.config.from_address:
            return False
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._verify_connection)

    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.config.from_address
        msg["To"] = recipient
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid(domain=self.config.from_address.split("@")[-1])

        msg.attach(MIMEText(html_to_text(message.body), "plain", "utf-8"))
        msg.attach(MIMEText(self._wrap_html(alert, message), "html", "utf-8"))

        # smtplib blocks, so it runs in the default executor
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(None, self._send_message, msg)
        return msg["Message-ID"]

    def _open(self) -> smtplib.SMTP:
        server = smtplib.SMTP(
            self.config.host, self.config.port, timeout=self.config.timeout_seconds
        )
        if self.config.use_tls:
            server.starttls()
        if self.config.username and self.config.password:
            server.login(self.config.username, self.config.password)
        return server

    def _send_message(self, msg: MIMEMultipart) -> None:
        with self._open() as server:
            server.send_message(msg)

    def _verify_connection(self) -> bool:
        with self._open() as server:
            code, _ = server.noop()
        return code == 250

    @staticmethod
    def _wrap_html(alert: Alert, message: RenderedMessage) -> str:
        color = SEVERITY_COLORS.get(alert.severity, "#808080")
        return (
            "<html><body style=\"font-family: Arial, sans-serif;\">"
            f"<div style=\"border-left: 4px solid {color}; padding: 12px;\">"
            f"<h2 style=\"color: {color}; margin-top: 0;\">{html.escape(message.subject)}</h2>"
            f"<div>{message.body}</div>"
            "</div>"
            "<p style=\"color: #808080; font-size: 12px;\">DevFlow Alerts</p>"
            "</body></html>"
        )
