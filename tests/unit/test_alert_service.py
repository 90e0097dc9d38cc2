"""
Unit tests for the alert lifecycle service.

Tests deduplication and cooldown, the status state machine, rule CRUD,
escalation, alert metrics and the events published along the way.
"""

import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, make_alert, make_metric, make_rule
from devflow_alerts.config import AlertServiceConfig
from devflow_alerts.exceptions import ValidationError
from devflow_alerts.models import (
    AlertContext,
    AlertFeedback,
    AlertStatus,
    AlertType,
    EscalationPolicy,
    EscalationStep,
    FeedbackRelevance,
    MLAnomalyResult,
    NotificationChannel,
)
from devflow_alerts.services import AlertService


def _recorder(service, *events):
    seen = []
    for name in events:
        service.on(name, lambda *args, _name=name: seen.append((_name, args)))
    return seen


class TestEvaluateMetrics:
    """Test alert creation, cooldown and deduplication."""

    async def test_no_rules_no_alerts(self, alert_service):
        """Without enabled rules nothing is evaluated."""
        assert await alert_service.evaluate_metrics([make_metric(0.1)]) == []

    async def test_repeated_call_is_deduplicated(self, alert_service, alert_repository):
        """An identical batch inside the cooldown creates no second alert."""
        await alert_service.create_rule(make_rule())
        metrics = [make_metric(0.2)]

        first = await alert_service.evaluate_metrics(metrics)
        second = await alert_service.evaluate_metrics(metrics)

        assert len(first) == 1
        assert second == []
        assert len(await alert_repository.get_alert_history()) == 1

    async def test_acknowledged_alert_clears_cooldown(self, alert_service):
        """Once the prior alert is acknowledged the same batch may alert again."""
        await alert_service.create_rule(make_rule())
        metrics = [make_metric(0.2)]

        [first] = await alert_service.evaluate_metrics(metrics)
        assert await alert_service.acknowledge_alert(first.id, "lead") is True

        again = await alert_service.evaluate_metrics(metrics)
        assert len(again) == 1
        assert again[0].id != first.id

    async def test_cooldown_elapses(self, alert_service, clock):
        """A still-active alert stops blocking after the cooldown period."""
        await alert_service.create_rule(make_rule(cooldown_period=30))
        assert len(await alert_service.evaluate_metrics([make_metric(0.2)])) == 1

        clock.advance(minutes=29)
        assert await alert_service.evaluate_metrics([make_metric(0.2, now=clock.now)]) == []

        clock.advance(minutes=2)
        assert len(await alert_service.evaluate_metrics([make_metric(0.2, now=clock.now)])) == 1

    async def test_cooldown_is_per_user(self, alert_service):
        """Different users of the same rule do not deduplicate each other."""
        await alert_service.create_rule(make_rule())

        first = await alert_service.evaluate_metrics([make_metric(0.2, user_id="alice")])
        second = await alert_service.evaluate_metrics([make_metric(0.2, user_id="bob")])

        assert len(first) == 1
        assert len(second) == 1

    async def test_suppressed_alert_blocks_until_expiry(self, alert_service, clock):
        """A suppression holds back new alerts for the rule until it expires."""
        await alert_service.create_rule(make_rule(cooldown_period=0))
        [alert] = await alert_service.evaluate_metrics([make_metric(0.2)])
        assert await alert_service.suppress_alert(alert.id, NOW + timedelta(hours=2))

        clock.advance(minutes=30)
        assert await alert_service.evaluate_metrics([make_metric(0.2, now=clock.now)]) == []

        clock.advance(hours=2)
        assert len(await alert_service.evaluate_metrics([make_metric(0.2, now=clock.now)])) == 1

    async def test_concurrent_evaluations_create_one_alert(self, alert_service):
        """Concurrent batches for the same rule and user are serialized."""
        await alert_service.create_rule(make_rule())
        metrics = [make_metric(0.2)]

        results = await asyncio.gather(
            *(alert_service.evaluate_metrics(metrics) for _ in range(5))
        )

        assert sum(len(r) for r in results) == 1
        assert alert_service._dedup_locks == {}

    async def test_dedup_locks_released(self, alert_service):
        """Per-user serialization state does not accumulate across users."""
        await alert_service.create_rule(make_rule())

        for index in range(20):
            await alert_service.evaluate_metrics([make_metric(0.2, user_id=f"user-{index}")])

        assert alert_service._dedup_locks == {}
        assert not alert_service._dedup_waiters

    async def test_active_alert_limit(self, rule_engine, alert_repository, rule_repository, clock):
        """Candidates beyond max_active_alerts are dropped."""
        service = AlertService(
            rule_engine,
            alert_repository,
            rule_repository,
            config=AlertServiceConfig(max_active_alerts=1),
            clock=clock,
        )
        await service.create_rule(make_rule(name="first"))
        await service.create_rule(make_rule(name="second"))

        created = await service.evaluate_metrics([make_metric(0.2)])

        assert len(created) == 1
        assert len(await service.get_active_alerts()) == 1

    async def test_alert_created_event(self, alert_service):
        """Every new alert is published."""
        seen = _recorder(alert_service, "alertCreated")
        await alert_service.create_rule(make_rule())

        [alert] = await alert_service.evaluate_metrics([make_metric(0.2)])

        assert seen == [("alertCreated", (alert,))]


class TestEvaluateMLAnomaly:
    """Test anomaly-driven alerts."""

    async def test_not_an_anomaly(self, alert_service, alert_repository):
        """Non-anomalous results create nothing."""
        result = MLAnomalyResult(False, 0.99, 0.1, 10.0, 10.2)
        assert await alert_service.evaluate_ml_anomaly(result, AlertContext()) is None
        assert await alert_repository.get_alert_history() == []

    async def test_anomaly_is_persisted_and_published(self, alert_service, alert_repository):
        """An anomaly alert is stored and announced."""
        seen = _recorder(alert_service, "alertCreated")
        result = MLAnomalyResult(True, 0.92, 3.1, 10.0, 2.0, ["meetings"])

        alert = await alert_service.evaluate_ml_anomaly(result, AlertContext(user_id="u1"))

        assert alert is not None
        assert await alert_repository.get_alert(alert.id) == alert
        assert seen == [("alertCreated", (alert,))]


class TestStateMachine:
    """Test alert status transitions."""

    async def _active_alert(self, alert_service):
        await alert_service.create_rule(make_rule())
        [alert] = await alert_service.evaluate_metrics([make_metric(0.2)])
        return alert

    async def test_acknowledge_then_resolve(self, alert_service, alert_repository, clock):
        """ACTIVE to ACKNOWLEDGED to RESOLVED records who and when."""
        seen = _recorder(
            alert_service, "alertCreated", "alertAcknowledged", "alertResolved"
        )
        alert = await self._active_alert(alert_service)

        clock.advance(minutes=5)
        assert await alert_service.acknowledge_alert(alert.id, "alice") is True
        clock.advance(minutes=10)
        assert await alert_service.resolve_alert(alert.id, "bob") is True

        stored = await alert_repository.get_alert(alert.id)
        assert stored.status == AlertStatus.RESOLVED
        assert stored.acknowledged_by == "alice"
        assert stored.acknowledged_at == NOW + timedelta(minutes=5)
        assert stored.resolved_by == "bob"
        assert stored.resolved_at == NOW + timedelta(minutes=15)
        assert [name for name, _ in seen] == [
            "alertCreated",
            "alertAcknowledged",
            "alertResolved",
        ]
        assert seen[-1][1][0].status == AlertStatus.RESOLVED

    async def test_acknowledge_resolved_alert_is_rejected(self, alert_service, alert_repository):
        """Acknowledging a resolved alert returns False and changes nothing."""
        alert = await self._active_alert(alert_service)
        await alert_service.resolve_alert(alert.id, "bob")
        before = await alert_repository.get_alert(alert.id)
        seen = _recorder(alert_service, "alertAcknowledged")

        assert await alert_service.acknowledge_alert(alert.id, "alice") is False

        assert await alert_repository.get_alert(alert.id) == before
        assert before.acknowledged_at is None
        assert seen == []

    async def test_resolve_from_active(self, alert_service):
        """Resolution does not require acknowledgement first."""
        alert = await self._active_alert(alert_service)
        assert await alert_service.resolve_alert(alert.id, "bob") is True

    async def test_terminal_states(self, alert_service):
        """Suppressed and resolved alerts accept no further transitions."""
        alert = await self._active_alert(alert_service)
        assert await alert_service.suppress_alert(alert.id, NOW + timedelta(hours=1))

        assert await alert_service.acknowledge_alert(alert.id, "alice") is False
        assert await alert_service.resolve_alert(alert.id, "alice") is False
        assert await alert_service.suppress_alert(alert.id, NOW) is False

    async def test_missing_alert(self, alert_service):
        """Unknown alert ids are reported as False."""
        assert await alert_service.acknowledge_alert("missing", "alice") is False
        assert await alert_service.resolve_alert("missing", "alice") is False

    async def test_suppress_records_expiry(self, alert_service, alert_repository):
        """Suppression stores its end time and publishes an event."""
        seen = _recorder(alert_service, "alertSuppressed")
        alert = await self._active_alert(alert_service)
        until = NOW + timedelta(hours=3)

        assert await alert_service.suppress_alert(alert.id, until) is True

        stored = await alert_repository.get_alert(alert.id)
        assert stored.status == AlertStatus.SUPPRESSED
        assert stored.suppressed_until == until
        assert len(seen) == 1


class TestRuleManagement:
    """Test rule CRUD."""

    async def test_create_from_wire_format(self, alert_service, clock):
        """Rules can be created from their camelCase JSON shape."""
        seen = _recorder(alert_service, "ruleCreated")

        rule = await alert_service.create_rule(
            {
                "id": "client-chosen",
                "name": "Coverage",
                "type": "quality_threshold",
                "severity": "medium",
                "conditions": [
                    {"metricType": "coverage", "operator": "lt", "threshold": 0.8, "timeWindow": 120}
                ],
                "actions": [{"channel": "slack", "recipients": ["#quality"]}],
            }
        )

        assert rule.id != "client-chosen"
        assert rule.created_at == clock.now
        assert rule.cooldown_period == 60
        assert rule.conditions[0].time_window == 120
        assert rule.actions[0].channel == NotificationChannel.SLACK
        assert [r.id for r in await alert_service.get_rules()] == [rule.id]
        assert seen == [("ruleCreated", (rule,))]

    async def test_create_rejects_unknown_operator(self, alert_service):
        """Unsupported operators and aggregations fail validation."""
        rule = make_rule(operator="between")
        rule.conditions[0].aggregation = "median"

        with pytest.raises(ValidationError) as excinfo:
            await alert_service.create_rule(rule)

        assert set(excinfo.value.field_errors) == {
            "conditions[0].operator",
            "conditions[0].aggregation",
        }

    async def test_create_rejects_malformed_dict(self, alert_service):
        """Missing required keys surface as a validation error."""
        with pytest.raises(ValidationError):
            await alert_service.create_rule({"name": "no type"})

    async def test_update_rule(self, alert_service, clock):
        """Updates patch mutable fields and refresh updated_at."""
        rule = await alert_service.create_rule(make_rule())
        seen = _recorder(alert_service, "ruleUpdated")
        clock.advance(minutes=1)

        updated = await alert_service.update_rule(
            rule.id, {"name": "Renamed", "id": "hijack", "enabled": False}
        )

        assert updated.id == rule.id
        assert updated.name == "Renamed"
        assert updated.enabled is False
        assert updated.created_at == rule.created_at
        assert updated.updated_at == clock.now
        assert seen == [("ruleUpdated", (updated,))]

    async def test_update_rule_wire_format(self, alert_service):
        """Updates accept camelCase keys and wire-format conditions."""
        rule = await alert_service.create_rule(make_rule())

        updated = await alert_service.update_rule(
            rule.id,
            {
                "cooldownPeriod": 5,
                "severity": "critical",
                "conditions": [{"metricType": "velocity", "operator": "gt", "threshold": 1}],
                "escalationPolicy": {"steps": [{"channels": ["email"], "afterMinutes": 10}]},
            },
        )

        assert updated.cooldown_period == 5
        assert updated.severity.value == "critical"
        [condition] = updated.conditions
        assert condition.metric_type == "velocity"
        assert condition.threshold == 1.0
        assert updated.escalation_policy.steps[0].after_minutes == 10

    async def test_update_rule_unknown_field(self, alert_service):
        """Unknown fields are rejected and the rule is left unchanged."""
        rule = await alert_service.create_rule(make_rule())

        with pytest.raises(ValidationError) as exc_info:
            await alert_service.update_rule(rule.id, {"cooldown": 5})

        assert "cooldown" in exc_info.value.field_errors
        [stored] = await alert_service.get_rules()
        assert stored.cooldown_period == rule.cooldown_period

    async def test_update_rule_invalid_condition(self, alert_service):
        """Malformed or unsupported conditions raise ValidationError."""
        rule = await alert_service.create_rule(make_rule())

        with pytest.raises(ValidationError):
            await alert_service.update_rule(rule.id, {"conditions": [{"operator": "gt"}]})
        with pytest.raises(ValidationError):
            await alert_service.update_rule(
                rule.id,
                {"conditions": [{"metricType": "x", "operator": "between", "threshold": 1}]},
            )

    async def test_update_missing_rule(self, alert_service):
        """Updating an unknown rule returns None."""
        assert await alert_service.update_rule("missing", {"name": "x"}) is None

    async def test_delete_rule(self, alert_service):
        """Deleted rules stop being returned."""
        rule = await alert_service.create_rule(make_rule())
        seen = _recorder(alert_service, "ruleDeleted")

        assert await alert_service.delete_rule(rule.id) is True
        assert await alert_service.delete_rule(rule.id) is False
        assert await alert_service.get_rules() == []
        assert seen == [("ruleDeleted", (rule.id,))]

    async def test_disabled_rule_not_evaluated(self, alert_service):
        """Rules disabled through an update no longer alert."""
        rule = await alert_service.create_rule(make_rule())
        await alert_service.update_rule(rule.id, {"enabled": False})
        assert await alert_service.evaluate_metrics([make_metric(0.2)]) == []


class TestAlertMetrics:
    """Test alert history summaries."""

    async def test_empty_history(self, alert_service):
        """No alerts means zeroed metrics."""
        metrics = await alert_service.get_alert_metrics()
        assert metrics.total_alerts == 0
        assert metrics.average_resolution_time == 0.0
        assert metrics.escalation_rate == 0.0

    async def test_summary(self, alert_service, alert_repository):
        """Resolution time is averaged in minutes over resolved alerts only."""
        await alert_repository.save_alert(
            make_alert(
                status=AlertStatus.RESOLVED,
                resolved_at=NOW + timedelta(minutes=30),
                escalation_level=1,
            )
        )
        await alert_repository.save_alert(make_alert(type=AlertType.DEADLINE_RISK))

        metrics = await alert_service.get_alert_metrics()

        assert metrics.total_alerts == 2
        assert metrics.alerts_by_type == {"quality_threshold": 1, "deadline_risk": 1}
        assert metrics.alerts_by_severity == {"high": 2}
        assert metrics.average_resolution_time == 30
        assert metrics.escalation_rate == 0.5


class TestEscalation:
    """Test escalation of unacknowledged alerts."""

    @pytest.fixture
    async def escalating_alert(self, alert_service):
        policy = EscalationPolicy(
            steps=[
                EscalationStep(
                    channels=[NotificationChannel.SLACK],
                    recipients={NotificationChannel.SLACK: ["#oncall"]},
                    after_minutes=10,
                ),
                EscalationStep(
                    channels=[NotificationChannel.EMAIL],
                    recipients={NotificationChannel.EMAIL: ["lead@example.com"]},
                ),
            ]
        )
        await alert_service.create_rule(make_rule(escalation_policy=policy))
        [alert] = await alert_service.evaluate_metrics([make_metric(0.2)])
        return alert

    async def test_steps_escalate_one_level_at_a_time(
        self, alert_service, alert_repository, escalating_alert, clock
    ):
        """Each step waits its own delay after the previous one."""
        seen = _recorder(alert_service, "alertEscalated")

        clock.advance(minutes=9)
        assert await alert_service.check_escalations() == []

        clock.advance(minutes=1)
        [first] = await alert_service.check_escalations()
        assert first.escalation_level == 1
        assert await alert_service.check_escalations() == []

        # Second step falls back to the 300 second escalation timeout
        clock.advance(minutes=4)
        assert await alert_service.check_escalations() == []
        clock.advance(minutes=1)
        [second] = await alert_service.check_escalations()
        assert second.escalation_level == 2

        clock.advance(hours=1)
        assert await alert_service.check_escalations() == []

        stored = await alert_repository.get_alert(escalating_alert.id)
        assert stored.escalation_level == 2
        steps = [args[1] for _, args in seen]
        assert [s.channels for s in steps] == [
            [NotificationChannel.SLACK],
            [NotificationChannel.EMAIL],
        ]

    async def test_acknowledged_alerts_do_not_escalate(
        self, alert_service, escalating_alert, clock
    ):
        """Only active alerts escalate."""
        await alert_service.acknowledge_alert(escalating_alert.id, "alice")
        clock.advance(hours=1)
        assert await alert_service.check_escalations() == []

    async def test_rules_without_policy_do_not_escalate(self, alert_service, clock):
        """Alerts from rules without a policy stay at level zero."""
        await alert_service.create_rule(make_rule())
        await alert_service.evaluate_metrics([make_metric(0.2)])
        clock.advance(days=1)
        assert await alert_service.check_escalations() == []


class TestFeedback:
    """Test feedback recording."""

    async def test_feedback_is_published(self, alert_service):
        """Feedback is announced even without a fatigue service."""
        seen = _recorder(alert_service, "feedbackReceived")
        feedback = AlertFeedback("a1", "u1", FeedbackRelevance.RELEVANT, action_taken=True)

        await alert_service.record_feedback(feedback)

        assert seen == [("feedbackReceived", (feedback,))]

    async def test_feedback_forwarded_to_fatigue_service(
        self, rule_engine, alert_repository, rule_repository, fatigue_service, clock
    ):
        """Feedback is analysed under the type of the alert it refers to."""
        service = AlertService(
            rule_engine,
            alert_repository,
            rule_repository,
            fatigue_service=fatigue_service,
            clock=clock,
        )
        alert = make_alert(type=AlertType.FLOW_INTERRUPTION)
        await alert_repository.save_alert(alert)

        await service.record_feedback(
            AlertFeedback(alert.id, "user-1", FeedbackRelevance.NOT_RELEVANT)
        )

        analysis = await fatigue_service.get_feedback_analysis(
            "user-1", AlertType.FLOW_INTERRUPTION
        )
        assert analysis is not None
        assert analysis.false_positive_rate == 1.0
