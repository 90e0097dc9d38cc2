"""
Data model for alerting and notification delivery.

This module defines the enums and dataclasses shared by the rule engine,
the alert lifecycle service and the notification pipeline, together with
conversion to and from the JSON wire shape (camelCase keys, ISO-8601
timestamps).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class AlertType(str, Enum):
    """Kinds of alerts a rule (or anomaly detector) can raise."""

    PRODUCTIVITY_ANOMALY = "productivity_anomaly"
    QUALITY_THRESHOLD = "quality_threshold"
    FLOW_INTERRUPTION = "flow_interruption"
    WELLNESS_CONCERN = "wellness_concern"
    DEADLINE_RISK = "deadline_risk"
    TEAM_COLLABORATION = "team_collaboration"
    CUSTOM = "custom"


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    """Alert status."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


class RecommendationType(str, Enum):
    ACTION = "action"
    INSIGHT = "insight"
    RESOURCE = "resource"


class NotificationChannel(str, Enum):
    """Delivery media supported by the notification service."""

    EMAIL = "email"
    SLACK = "slack"
    TEAMS = "teams"
    IN_APP = "in_app"
    WEBHOOK = "webhook"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class FeedbackRelevance(str, Enum):
    VERY_RELEVANT = "very_relevant"
    RELEVANT = "relevant"
    SOMEWHAT_RELEVANT = "somewhat_relevant"
    NOT_RELEVANT = "not_relevant"


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# Comparison operators and aggregations are kept as plain strings on
# conditions so that malformed rules can still be loaded and evaluated.
OPERATORS = ("gt", "gte", "lt", "lte", "eq", "ne")
AGGREGATIONS = ("avg", "sum", "min", "max", "count")


@dataclass
class MetricData:
    """A single timestamped metric sample."""

    type: str
    value: float
    timestamp: datetime
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    project_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricData":
        return cls(
            type=data["type"],
            value=float(data["value"]),
            timestamp=parse_timestamp(data["timestamp"]),
            user_id=data.get("userId"),
            team_id=data.get("teamId"),
            project_id=data.get("projectId"),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "value": self.value,
            "timestamp": format_timestamp(self.timestamp),
            "userId": self.user_id,
            "teamId": self.team_id,
            "projectId": self.project_id,
            "metadata": self.metadata,
        }


@dataclass
class AlertCondition:
    """
    A single threshold test over an aggregated metric window.

    Args:
        metric_type: Metric type the condition looks at
        operator: One of gt, gte, lt, lte, eq, ne
        threshold: Value the aggregate is compared against
        time_window: Look-back window in minutes
        aggregation: One of avg, sum, min, max, count
    """

    metric_type: str
    operator: str
    threshold: float
    time_window: int = 60
    aggregation: str = "avg"
    id: str = field(default_factory=new_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertCondition":
        return cls(
            id=data.get("id") or new_id(),
            metric_type=data["metricType"],
            operator=data["operator"],
            threshold=float(data["threshold"]),
            time_window=int(data.get("timeWindow", 60)),
            aggregation=data.get("aggregation", "avg"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "metricType": self.metric_type,
            "operator": self.operator,
            "threshold": self.threshold,
            "timeWindow": self.time_window,
            "aggregation": self.aggregation,
        }


@dataclass
class AlertAction:
    """Where a rule's alerts are delivered."""

    channel: NotificationChannel
    recipients: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertAction":
        return cls(
            channel=NotificationChannel(data["channel"]),
            recipients=list(data.get("recipients") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"channel": self.channel.value, "recipients": list(self.recipients)}


@dataclass
class EscalationStep:
    """
    One level of an escalation policy.

    ``after_minutes`` is measured from the previous step (or from the trigger
    time for the first step). When unset, the alert service's escalation
    timeout is used.
    """

    channels: List[NotificationChannel] = field(default_factory=list)
    recipients: Dict[NotificationChannel, List[str]] = field(default_factory=dict)
    after_minutes: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationStep":
        return cls(
            channels=[NotificationChannel(c) for c in data.get("channels", [])],
            recipients={
                NotificationChannel(channel): list(values)
                for channel, values in (data.get("recipients") or {}).items()
            },
            after_minutes=data.get("afterMinutes"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channels": [c.value for c in self.channels],
            "recipients": {c.value: list(r) for c, r in self.recipients.items()},
            "afterMinutes": self.after_minutes,
        }


@dataclass
class EscalationPolicy:
    steps: List[EscalationStep] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscalationPolicy":
        return cls(steps=[EscalationStep.from_dict(s) for s in data.get("steps", [])])

    def to_dict(self) -> Dict[str, Any]:
        return {"steps": [s.to_dict() for s in self.steps]}


@dataclass
class AlertRule:
    """
    Declarative rule: when every condition holds, an alert is raised.

    A rule with no conditions never triggers.
    """

    id: str
    name: str
    type: AlertType
    severity: AlertSeverity
    conditions: List[AlertCondition] = field(default_factory=list)
    description: str = ""
    enabled: bool = True
    actions: List[AlertAction] = field(default_factory=list)
    cooldown_period: Optional[int] = None
    escalation_policy: Optional[EscalationPolicy] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    created_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        policy = data.get("escalationPolicy")
        return cls(
            id=data.get("id") or new_id(),
            name=data["name"],
            description=data.get("description", ""),
            type=AlertType(data["type"]),
            severity=AlertSeverity(data["severity"]),
            enabled=bool(data.get("enabled", True)),
            conditions=[AlertCondition.from_dict(c) for c in data.get("conditions", [])],
            actions=[AlertAction.from_dict(a) for a in data.get("actions", [])],
            cooldown_period=data.get("cooldownPeriod"),
            escalation_policy=EscalationPolicy.from_dict(policy) if policy else None,
            created_at=parse_timestamp(data.get("createdAt")) or utcnow(),
            updated_at=parse_timestamp(data.get("updatedAt")) or utcnow(),
            created_by=data.get("createdBy"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "cooldownPeriod": self.cooldown_period,
            "escalationPolicy": (
                self.escalation_policy.to_dict() if self.escalation_policy else None
            ),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "createdBy": self.created_by,
        }


@dataclass
class TimeRange:
    start: datetime
    end: datetime


@dataclass
class AlertContext:
    """Who and what an alert is about, plus the metric snapshot behind it."""

    user_id: Optional[str] = None
    team_id: Optional[str] = None
    project_id: Optional[str] = None
    metric_values: Dict[str, float] = field(default_factory=dict)
    time_range: Optional[TimeRange] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "teamId": self.team_id,
            "projectId": self.project_id,
            "metricValues": dict(self.metric_values),
            "timeRange": (
                {
                    "start": format_timestamp(self.time_range.start),
                    "end": format_timestamp(self.time_range.end),
                }
                if self.time_range
                else None
            ),
            "additionalData": dict(self.additional_data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertContext":
        time_range = data.get("timeRange")
        return cls(
            user_id=data.get("userId"),
            team_id=data.get("teamId"),
            project_id=data.get("projectId"),
            metric_values=dict(data.get("metricValues") or {}),
            time_range=(
                TimeRange(
                    start=parse_timestamp(time_range["start"]),
                    end=parse_timestamp(time_range["end"]),
                )
                if time_range
                else None
            ),
            additional_data=dict(data.get("additionalData") or {}),
        )


@dataclass
class Recommendation:
    type: RecommendationType
    title: str
    description: str
    priority: int = 1
    action_url: Optional[str] = None
    estimated_impact: Optional[str] = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "actionUrl": self.action_url,
            "estimatedImpact": self.estimated_impact,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        return cls(
            id=data.get("id") or new_id(),
            type=RecommendationType(data["type"]),
            title=data["title"],
            description=data.get("description", ""),
            priority=int(data.get("priority", 1)),
            action_url=data.get("actionUrl"),
            estimated_impact=data.get("estimatedImpact"),
        )


@dataclass
class Alert:
    """A triggered instance of a rule or an anomaly detection."""

    id: str
    rule_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    context: AlertContext = field(default_factory=AlertContext)
    recommendations: List[Recommendation] = field(default_factory=list)
    status: AlertStatus = AlertStatus.ACTIVE
    triggered_at: datetime = field(default_factory=utcnow)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    escalation_level: int = 0
    suppressed_until: Optional[datetime] = None

    def __post_init__(self):
        if self.escalation_level < 0:
            raise ValueError(
                f"Escalation level cannot be negative: {self.escalation_level}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ruleId": self.rule_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "message": self.message,
            "context": self.context.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "triggeredAt": format_timestamp(self.triggered_at),
            "acknowledgedAt": format_timestamp(self.acknowledged_at),
            "acknowledgedBy": self.acknowledged_by,
            "resolvedAt": format_timestamp(self.resolved_at),
            "resolvedBy": self.resolved_by,
            "escalationLevel": self.escalation_level,
            "suppressedUntil": format_timestamp(self.suppressed_until),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Alert":
        return cls(
            id=data.get("id") or new_id(),
            rule_id=data["ruleId"],
            type=AlertType(data["type"]),
            severity=AlertSeverity(data["severity"]),
            status=AlertStatus(data.get("status", AlertStatus.ACTIVE.value)),
            title=data["title"],
            message=data.get("message", ""),
            context=AlertContext.from_dict(data.get("context") or {}),
            recommendations=[
                Recommendation.from_dict(r) for r in data.get("recommendations", [])
            ],
            triggered_at=parse_timestamp(data.get("triggeredAt")) or utcnow(),
            acknowledged_at=parse_timestamp(data.get("acknowledgedAt")),
            acknowledged_by=data.get("acknowledgedBy"),
            resolved_at=parse_timestamp(data.get("resolvedAt")),
            resolved_by=data.get("resolvedBy"),
            escalation_level=int(data.get("escalationLevel", 0)),
            suppressed_until=parse_timestamp(data.get("suppressedUntil")),
        )


@dataclass
class MLAnomalyResult:
    """Pre-computed anomaly detection output."""

    is_anomaly: bool
    confidence: float
    anomaly_score: float
    expected_value: float
    actual_value: float
    contributing_factors: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1]: {self.confidence}")


@dataclass
class AlertFeedback:
    alert_id: str
    user_id: str
    relevance: FeedbackRelevance
    action_taken: bool = False
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class AlertMetrics:
    total_alerts: int
    alerts_by_type: Dict[str, int]
    alerts_by_severity: Dict[str, int]
    average_resolution_time: float
    escalation_rate: float


@dataclass
class NotificationTemplate:
    id: str
    channel: NotificationChannel
    alert_type: AlertType
    subject: str
    body: str
    variables: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotificationTemplate":
        return cls(
            id=data.get("id") or new_id(),
            channel=NotificationChannel(data["channel"]),
            alert_type=AlertType(data["alertType"]),
            subject=data.get("subject", ""),
            body=data.get("body", ""),
            variables=list(data.get("variables") or []),
        )


@dataclass
class NotificationDelivery:
    """
    One (alert, channel, recipient) send attempt.

    Retries update the same record in place.
    """

    id: str
    alert_id: str
    channel: NotificationChannel
    recipient: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None
    retry_count: int = 0
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alertId": self.alert_id,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "status": self.status.value,
            "sentAt": format_timestamp(self.sent_at),
            "deliveredAt": format_timestamp(self.delivered_at),
            "error": self.error,
            "retryCount": self.retry_count,
            "messageId": self.message_id,
        }


@dataclass
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    delivered_at: Optional[datetime] = None


@dataclass
class BulkNotification:
    alert: Alert
    channels: List[NotificationChannel]
    recipients: Dict[NotificationChannel, List[str]]


@dataclass
class InAppNotification:
    id: str
    user_id: str
    alert_id: str
    title: str
    message: str
    severity: AlertSeverity
    alert_type: AlertType
    read: bool = False
    created_at: datetime = field(default_factory=utcnow)
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "alertId": self.alert_id,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "alertType": self.alert_type.value,
            "read": self.read,
            "createdAt": format_timestamp(self.created_at),
            "readAt": format_timestamp(self.read_at),
            "expiresAt": format_timestamp(self.expires_at),
            "data": self.data,
        }


@dataclass
class RecurrencePattern:
    """
    How a maintenance window repeats.

    Args:
        type: daily, weekly or monthly
        interval: Every N days/weeks/months
        days_of_week: Weekly windows only (0=Monday .. 6=Sunday)
        day_of_month: Monthly windows only
    """

    type: RecurrenceType
    interval: int = 1
    days_of_week: List[int] = field(default_factory=list)
    day_of_month: Optional[int] = None


@dataclass
class MaintenanceWindow:
    """
    Period during which alerts from the affected rules are suppressed.

    Recurring windows only use the time of day of ``start`` and ``end``.
    An empty ``affected_rules`` list matches every rule.
    """

    id: str
    name: str
    start: datetime
    end: datetime
    recurrence: Optional[RecurrencePattern] = None
    affected_rules: List[str] = field(default_factory=list)
    created_by: Optional[str] = None

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("Maintenance window must end after it starts")

    @property
    def recurring(self) -> bool:
        return self.recurrence is not None


@dataclass
class FatigueMetrics:
    """Per-user alert volume used to detect alert fatigue."""

    user_id: str
    alert_count: int
    time_window: int
    last_alert_time: datetime
    fatigue_score: float = 0.0
    adaptive_threshold: float = 0.0


@dataclass
class FeedbackAnalysis:
    """Running feedback averages for one user and alert type."""

    user_id: str
    alert_type: AlertType
    relevance_score: float
    action_taken_rate: float
    false_positive_rate: float
    recommended_threshold_adjustment: float = 0.0
