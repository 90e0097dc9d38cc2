"""
Fixed-schema template rendering.

Templates reference alert fields as ``{{name}}`` placeholders. The set of
names is fixed (see ``TEMPLATE_VARIABLES``); substitution is literal, so no
template syntax beyond the placeholder itself is interpreted. Placeholders
outside the schema are left untouched.
"""

import re
from dataclasses import dataclass
from typing import Dict

from .models import Alert, NotificationTemplate

UNKNOWN = "Unknown"

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

TEMPLATE_VARIABLES = (
    "alertId",
    "alertTitle",
    "alertMessage",
    "severity",
    "alertType",
    "status",
    "triggeredAt",
    "userId",
    "teamId",
    "projectId",
    "recommendations",
    "metricValues",
)


@dataclass
class RenderedMessage:
    subject: str
    body: str


class TemplateRenderer:
    """Renders notification templates against an alert."""

    def build_variables(self, alert: Alert) -> Dict[str, str]:
        """Map every template variable name to its value for this alert."""
        context = alert.context
        recommendations = "\n".join(
            f"- {rec.title}: {rec.description}" for rec in alert.recommendations
        )
        metric_values = ", ".join(
            f"{name}: {value}" for name, value in context.metric_values.items()
        )
        return {
            "alertId": alert.id,
            "alertTitle": alert.title,
            "alertMessage": alert.message,
            "severity": alert.severity.value,
            "alertType": alert.type.value,
            "status": alert.status.value,
            "triggeredAt": alert.triggered_at.isoformat(),
            "userId": context.user_id or UNKNOWN,
            "teamId": context.team_id or UNKNOWN,
            "projectId": context.project_id or UNKNOWN,
            "recommendations": recommendations,
            "metricValues": metric_values,
        }

    def render_text(self, text: str, variables: Dict[str, str]) -> str:
        # Single pass, so substituted values are never re-expanded
        return _PLACEHOLDER.sub(
            lambda match: variables.get(match.group(1), match.group(0)), text
        )

    def render(self, template: NotificationTemplate, alert: Alert) -> RenderedMessage:
        variables = self.build_variables(alert)
        return RenderedMessage(
            subject=self.render_text(template.subject, variables),
            body=self.render_text(template.body, variables),
        )
