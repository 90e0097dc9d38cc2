"""Shared fixtures for the alerting test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from devflow_alerts.config import (
    AlertServiceConfig,
    FatigueConfig,
    NotificationServiceConfig,
)
from devflow_alerts.engine import RuleEngine
from devflow_alerts.interfaces import NotificationProvider
from devflow_alerts.models import (
    Alert,
    AlertCondition,
    AlertContext,
    AlertRule,
    AlertSeverity,
    AlertType,
    MetricData,
    NotificationChannel,
    NotificationResult,
    NotificationTemplate,
    Recommendation,
    RecommendationType,
    new_id,
)
from devflow_alerts.repositories import (
    InMemoryAlertRepository,
    InMemoryAlertRuleRepository,
    InMemoryFatigueRepository,
    InMemoryNotificationRepository,
    InMemoryTemplateRepository,
)
from devflow_alerts.services import (
    AlertFatigueService,
    AlertService,
    NotificationService,
)

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class MockProvider(NotificationProvider):
    """Provider double that records sends and can be told to fail or stall."""

    def __init__(
        self,
        channel: NotificationChannel,
        fail: bool = False,
        delay: float = 0.0,
        valid: bool = True,
    ):
        self.channel = channel
        self.fail = fail
        self.delay = delay
        self.valid = valid
        self.sent: List[tuple] = []

    async def send(self, alert, recipient, template):
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((alert.id, recipient, template.id))
        if self.fail:
            return NotificationResult(success=False, error="Mock provider failure")
        return NotificationResult(
            success=True, message_id=f"msg-{len(self.sent)}", delivered_at=NOW
        )

    async def validate_config(self) -> bool:
        return self.valid

    def get_channel_type(self) -> NotificationChannel:
        return self.channel


def make_metric(
    value: float,
    metric_type: str = "productivity_score",
    minutes_ago: float = 5,
    user_id: Optional[str] = "user-1",
    now: datetime = NOW,
) -> MetricData:
    return MetricData(
        type=metric_type,
        value=value,
        timestamp=now - timedelta(minutes=minutes_ago),
        user_id=user_id,
        team_id="team-1",
        project_id="project-1",
    )


def make_rule(
    threshold: float = 0.5,
    operator: str = "lt",
    metric_type: str = "productivity_score",
    rule_type: AlertType = AlertType.PRODUCTIVITY_ANOMALY,
    **kwargs,
) -> AlertRule:
    defaults = dict(
        id=new_id(),
        name="Low productivity",
        type=rule_type,
        severity=AlertSeverity.HIGH,
        conditions=[
            AlertCondition(
                metric_type=metric_type,
                operator=operator,
                threshold=threshold,
                time_window=60,
                aggregation="avg",
            )
        ],
    )
    defaults.update(kwargs)
    return AlertRule(**defaults)


def make_alert(**kwargs) -> Alert:
    defaults = dict(
        id=new_id(),
        rule_id="rule-1",
        type=AlertType.QUALITY_THRESHOLD,
        severity=AlertSeverity.HIGH,
        title="Quality dropped",
        message="Coverage fell below target",
        context=AlertContext(
            user_id="user-1",
            team_id="team-1",
            project_id="project-1",
            metric_values={"coverage": 0.42},
        ),
        recommendations=[
            Recommendation(
                type=RecommendationType.ACTION,
                title="Code Review Focus",
                description="Review the affected modules",
            )
        ],
        triggered_at=NOW,
    )
    defaults.update(kwargs)
    return Alert(**defaults)


def make_template(
    channel: NotificationChannel = NotificationChannel.EMAIL,
    alert_type: AlertType = AlertType.QUALITY_THRESHOLD,
    **kwargs,
) -> NotificationTemplate:
    defaults = dict(
        id=new_id(),
        channel=channel,
        alert_type=alert_type,
        subject="[{{severity}}] {{alertTitle}}",
        body="{{alertMessage}}",
        variables=["severity", "alertTitle", "alertMessage"],
    )
    defaults.update(kwargs)
    return NotificationTemplate(**defaults)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def rule_engine(clock):
    return RuleEngine(clock=clock)


@pytest.fixture
def alert_repository():
    return InMemoryAlertRepository()


@pytest.fixture
def rule_repository():
    return InMemoryAlertRuleRepository()


@pytest.fixture
def alert_service(rule_engine, alert_repository, rule_repository, clock):
    return AlertService(
        rule_engine,
        alert_repository,
        rule_repository,
        config=AlertServiceConfig(),
        clock=clock,
    )


@pytest.fixture
def fatigue_service(clock):
    return AlertFatigueService(
        InMemoryFatigueRepository(),
        FatigueConfig(enabled=True, fatigue_threshold=3, time_window_minutes=60),
        clock=clock,
    )


@pytest.fixture
def notification_repository():
    return InMemoryNotificationRepository()


@pytest.fixture
def template_repository():
    return InMemoryTemplateRepository()


@pytest.fixture
def known_alerts():
    """Alert store backing the notification service's alert lookup."""
    return {}


@pytest.fixture
def notification_service(notification_repository, template_repository, known_alerts):
    async def lookup(alert_id):
        return known_alerts.get(alert_id)

    return NotificationService(
        notification_repository,
        template_repository,
        config=NotificationServiceConfig(max_retries=3, retry_delay=1000, batch_size=10),
        alert_lookup=lookup,
    )
