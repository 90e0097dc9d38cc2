"""
Alert lifecycle service.

Runs the rule engine against stored rules, owns alert identity, cooldown and
deduplication, drives the alert status state machine, escalates stale alerts
and reports alert metrics. Lifecycle changes are published as events.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from dataclasses import fields
from datetime import datetime, timedelta
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import structlog

from ..config import AlertServiceConfig
from ..engine.rule_engine import RuleEngine
from ..events import EventEmitter
from ..exceptions import ValidationError
from ..interfaces import AlertRepository, AlertRuleRepository
from ..metrics import AlertingMetricsCollector
from ..models import (
    AGGREGATIONS,
    OPERATORS,
    Alert,
    AlertContext,
    AlertFeedback,
    AlertMetrics,
    AlertAction,
    AlertCondition,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    AlertType,
    EscalationPolicy,
    EscalationStep,
    MetricData,
    MLAnomalyResult,
    new_id,
    utcnow,
)
from .fatigue_service import AlertFatigueService

logger = structlog.get_logger(__name__, component="alert_service")

# Allowed status transitions; anything else is a no-op returning False
_TRANSITIONS = {
    AlertStatus.ACTIVE: {
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
        AlertStatus.SUPPRESSED,
    },
    AlertStatus.ACKNOWLEDGED: {AlertStatus.RESOLVED},
    AlertStatus.RESOLVED: set(),
    AlertStatus.SUPPRESSED: set(),
}

# Rule fields that callers may not overwrite through update_rule
_IMMUTABLE_RULE_FIELDS = {"id", "created_at", "created_by"}

_RULE_FIELDS = {f.name for f in fields(AlertRule)}

# Wire-format keys accepted by update_rule alongside the field names
_RULE_WIRE_KEYS = {
    "cooldownPeriod": "cooldown_period",
    "escalationPolicy": "escalation_policy",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "createdBy": "created_by",
}


def _rule_patch(updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a field-name or wire-format rule update onto typed field values."""
    patch: Dict[str, Any] = {}
    unknown: Dict[str, str] = {}
    for key, value in updates.items():
        name = _RULE_WIRE_KEYS.get(key, key)
        if name in _RULE_FIELDS:
            patch[name] = value
        else:
            unknown[key] = "unknown rule field"
    if unknown:
        raise ValidationError("Invalid rule update", field_errors=unknown)

    try:
        if "type" in patch:
            patch["type"] = AlertType(patch["type"])
        if "severity" in patch:
            patch["severity"] = AlertSeverity(patch["severity"])
        if "conditions" in patch:
            patch["conditions"] = [
                c if isinstance(c, AlertCondition) else AlertCondition.from_dict(c)
                for c in patch["conditions"]
            ]
        if "actions" in patch:
            patch["actions"] = [
                a if isinstance(a, AlertAction) else AlertAction.from_dict(a)
                for a in patch["actions"]
            ]
        if isinstance(patch.get("escalation_policy"), Mapping):
            patch["escalation_policy"] = EscalationPolicy.from_dict(
                dict(patch["escalation_policy"])
            )
    except (AttributeError, KeyError, ValueError, TypeError) as e:
        raise ValidationError(f"Invalid rule update: {e}") from e
    return patch


class AlertService(EventEmitter):
    """
    Orchestrates rule evaluation and the alert lifecycle.

    Events: ``alertCreated(alert)``, ``alertAcknowledged(alert)``,
    ``alertResolved(alert)``, ``alertSuppressed(alert)``,
    ``alertEscalated(alert, step)``, ``feedbackReceived(feedback)``,
    ``ruleCreated(rule)``, ``ruleUpdated(rule)``, ``ruleDeleted(rule_id)``.
    """

    def __init__(
        self,
        rule_engine: RuleEngine,
        alert_repository: AlertRepository,
        rule_repository: AlertRuleRepository,
        config: Optional[AlertServiceConfig] = None,
        fatigue_service: Optional[AlertFatigueService] = None,
        metrics: Optional[AlertingMetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__()
        self.rule_engine = rule_engine
        self.alert_repository = alert_repository
        self.rule_repository = rule_repository
        self.config = config or AlertServiceConfig()
        self.fatigue_service = fatigue_service
        self.metrics = metrics
        self._clock = clock or utcnow
        # Serializes the cooldown check and insert per (rule_id, user_id); an
        # entry lives only while some evaluation holds or awaits it
        self._dedup_locks: Dict[Tuple[str, Optional[str]], asyncio.Lock] = {}
        self._dedup_waiters: Dict[Tuple[str, Optional[str]], int] = defaultdict(int)

    async def evaluate_metrics(self, metrics: List[MetricData]) -> List[Alert]:
        """Evaluate enabled rules and persist the alerts that pass deduplication."""
        rules = await self.rule_repository.get_rules({"enabled": True})
        if not rules:
            return []

        rules_by_id = {rule.id: rule for rule in rules}
        candidates = self.rule_engine.evaluate_rules(metrics, rules)

        created: List[Alert] = []
        for alert in candidates:
            rule = rules_by_id[alert.rule_id]
            key = (alert.rule_id, alert.context.user_id)
            async with self._dedup_guard(key):
                reason = await self._skip_reason(rule, alert)
                if reason is None:
                    await self.alert_repository.save_alert(alert)
            if reason is not None:
                logger.debug(
                    "Candidate alert skipped",
                    rule_id=rule.id,
                    user_id=alert.context.user_id,
                    reason=reason,
                )
                if self.metrics:
                    self.metrics.record_alert_skipped(reason)
                continue

            await self._on_created(alert)
            created.append(alert)

        return created

    @contextlib.asynccontextmanager
    async def _dedup_guard(self, key: Tuple[str, Optional[str]]) -> AsyncIterator[None]:
        lock = self._dedup_locks.setdefault(key, asyncio.Lock())
        self._dedup_waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._dedup_waiters[key] -= 1
            if not self._dedup_waiters[key]:
                del self._dedup_waiters[key]
                del self._dedup_locks[key]

    async def evaluate_ml_anomaly(
        self, anomaly_result: MLAnomalyResult, context: AlertContext
    ) -> Optional[Alert]:
        """Raise an alert for a detected anomaly; non-anomalies yield None."""
        if not anomaly_result.is_anomaly:
            return None

        alert = self.rule_engine.generate_ml_anomaly_alert(anomaly_result, context)
        await self.alert_repository.save_alert(alert)
        await self._on_created(alert)
        return alert

    async def create_rule(self, rule_data: Union[AlertRule, Mapping[str, Any]]) -> AlertRule:
        """
        Create and persist a rule.

        Args:
            rule_data: An ``AlertRule`` or its wire-format dict. Any id and
                audit timestamps it carries are replaced.

        Raises:
            ValidationError: If a condition uses an unknown operator or aggregation
        """
        if isinstance(rule_data, AlertRule):
            rule = rule_data
        else:
            try:
                rule = AlertRule.from_dict(dict(rule_data))
            except (KeyError, ValueError, TypeError) as e:
                raise ValidationError(f"Invalid rule definition: {e}") from e

        self._validate_rule(rule)

        now = self._clock()
        rule.id = new_id()
        rule.created_at = now
        rule.updated_at = now
        if rule.cooldown_period is None:
            rule.cooldown_period = self.config.default_cooldown_period

        await self.rule_repository.save_rule(rule)
        logger.info("Rule created", rule_id=rule.id, name=rule.name)
        await self.emit("ruleCreated", rule)
        return rule

    async def update_rule(
        self, rule_id: str, updates: Dict[str, Any]
    ) -> Optional[AlertRule]:
        """
        Patch a rule; returns None when it does not exist.

        Args:
            rule_id: Rule to update
            updates: Field names or their wire-format (camelCase) keys. The
                id and audit fields are ignored.

        Raises:
            ValidationError: On unknown fields or an invalid resulting rule
        """
        existing = await self.rule_repository.get_rule(rule_id)
        if existing is None:
            return None

        patch = {
            k: v for k, v in _rule_patch(updates).items() if k not in _IMMUTABLE_RULE_FIELDS
        }
        patch["updated_at"] = self._clock()

        candidate = AlertRule(**{**existing.__dict__, **patch})
        self._validate_rule(candidate)

        await self.rule_repository.update_rule(rule_id, patch)
        updated = await self.rule_repository.get_rule(rule_id)
        logger.info("Rule updated", rule_id=rule_id, fields=sorted(patch))
        await self.emit("ruleUpdated", updated)
        return updated

    async def delete_rule(self, rule_id: str) -> bool:
        deleted = await self.rule_repository.delete_rule(rule_id)
        if deleted:
            logger.info("Rule deleted", rule_id=rule_id)
            await self.emit("ruleDeleted", rule_id)
        return deleted

    async def get_rules(self, filters: Optional[Dict[str, Any]] = None) -> List[AlertRule]:
        return await self.rule_repository.get_rules(filters)

    async def acknowledge_alert(self, alert_id: str, user_id: str) -> bool:
        """Acknowledge an active alert."""
        return await self._transition(
            alert_id,
            AlertStatus.ACKNOWLEDGED,
            "alertAcknowledged",
            acknowledged_at=self._clock(),
            acknowledged_by=user_id,
        )

    async def resolve_alert(self, alert_id: str, user_id: str) -> bool:
        """Resolve an active or acknowledged alert."""
        return await self._transition(
            alert_id,
            AlertStatus.RESOLVED,
            "alertResolved",
            resolved_at=self._clock(),
            resolved_by=user_id,
        )

    async def suppress_alert(self, alert_id: str, until: datetime) -> bool:
        """Suppress an active alert until the given time."""
        return await self._transition(
            alert_id,
            AlertStatus.SUPPRESSED,
            "alertSuppressed",
            suppressed_until=until,
        )

    async def record_feedback(self, feedback: AlertFeedback) -> None:
        await self.emit("feedbackReceived", feedback)

        if self.fatigue_service is not None:
            alert = await self.alert_repository.get_alert(feedback.alert_id)
            if alert is None:
                logger.warning(
                    "Feedback for unknown alert not forwarded", alert_id=feedback.alert_id
                )
                return
            await self.fatigue_service.record_alert_feedback(feedback, alert.type)

    async def get_alert_metrics(self) -> AlertMetrics:
        """Summarize the alert history."""
        history = await self.alert_repository.get_alert_history()

        by_type: Dict[str, int] = defaultdict(int)
        by_severity: Dict[str, int] = defaultdict(int)
        resolution_minutes: List[float] = []
        escalated = 0
        for alert in history:
            by_type[alert.type.value] += 1
            by_severity[alert.severity.value] += 1
            if alert.resolved_at is not None:
                delta = alert.resolved_at - alert.triggered_at
                resolution_minutes.append(delta.total_seconds() / 60)
            if alert.escalation_level > 0:
                escalated += 1

        total = len(history)
        return AlertMetrics(
            total_alerts=total,
            alerts_by_type=dict(by_type),
            alerts_by_severity=dict(by_severity),
            average_resolution_time=(
                sum(resolution_minutes) / len(resolution_minutes)
                if resolution_minutes
                else 0.0
            ),
            escalation_rate=escalated / total if total else 0.0,
        )

    async def get_active_alerts(self) -> List[Alert]:
        history = await self.alert_repository.get_alert_history()
        return [alert for alert in history if alert.status == AlertStatus.ACTIVE]

    async def check_escalations(self) -> List[Alert]:
        """
        Escalate active alerts that have waited past their next escalation step.

        Only alerts whose rule carries an escalation policy are considered. Each
        call moves an alert up at most one level.
        """
        now = self._clock()
        escalated: List[Alert] = []
        rules: Dict[str, Optional[AlertRule]] = {}

        for alert in await self.get_active_alerts():
            if alert.rule_id not in rules:
                rules[alert.rule_id] = await self.rule_repository.get_rule(alert.rule_id)
            rule = rules[alert.rule_id]
            if rule is None or rule.escalation_policy is None:
                continue

            steps = rule.escalation_policy.steps
            if alert.escalation_level >= len(steps):
                continue

            due_at = alert.triggered_at + self._escalation_delay(
                steps[: alert.escalation_level + 1]
            )
            if now < due_at:
                continue

            level = alert.escalation_level + 1
            await self.alert_repository.update_alert(alert.id, {"escalation_level": level})
            alert.escalation_level = level
            step = steps[level - 1]

            logger.warning("Alert escalated", alert_id=alert.id, level=level)
            if self.metrics:
                self.metrics.record_escalation(level)
            await self.emit("alertEscalated", alert, step)
            escalated.append(alert)

        return escalated

    def _escalation_delay(self, steps: List[EscalationStep]) -> timedelta:
        total = timedelta()
        for step in steps:
            if step.after_minutes is not None:
                total += timedelta(minutes=step.after_minutes)
            else:
                total += timedelta(seconds=self.config.escalation_timeout)
        return total

    async def _skip_reason(self, rule: AlertRule, alert: Alert) -> Optional[str]:
        now = self._clock()
        cooldown = (
            rule.cooldown_period
            if rule.cooldown_period is not None
            else self.config.default_cooldown_period
        )
        cooldown_start = now - timedelta(minutes=cooldown)
        user_id = alert.context.user_id

        history = await self.alert_repository.get_alert_history()
        active = 0
        for existing in history:
            if existing.status == AlertStatus.ACTIVE:
                active += 1
            if existing.rule_id != rule.id or existing.context.user_id != user_id:
                continue
            if (
                existing.status == AlertStatus.ACTIVE
                and existing.triggered_at > cooldown_start
            ):
                return "cooldown"
            if (
                existing.status == AlertStatus.SUPPRESSED
                and existing.suppressed_until is not None
                and existing.suppressed_until > now
            ):
                return "suppressed"

        if active >= self.config.max_active_alerts:
            logger.warning(
                "Active alert limit reached", limit=self.config.max_active_alerts
            )
            return "capacity"

        # Last, since a pass counts the alert against the user's fatigue budget
        if self.fatigue_service is not None and await self.fatigue_service.should_suppress_alert(
            alert
        ):
            return "fatigue"

        return None

    async def _transition(
        self, alert_id: str, target: AlertStatus, event: str, **fields: Any
    ) -> bool:
        alert = await self.alert_repository.get_alert(alert_id)
        if alert is None:
            logger.warning("Alert not found", alert_id=alert_id, target=target.value)
            return False

        if target not in _TRANSITIONS[alert.status]:
            logger.info(
                "Ignoring invalid alert transition",
                alert_id=alert_id,
                current=alert.status.value,
                target=target.value,
            )
            return False

        updates = {"status": target, **fields}
        await self.alert_repository.update_alert(alert_id, updates)
        for key, value in updates.items():
            setattr(alert, key, value)

        logger.info("Alert status changed", alert_id=alert_id, status=target.value)
        if self.metrics:
            self.metrics.record_transition(target.value)
        await self.emit(event, alert)
        return True

    async def _on_created(self, alert: Alert) -> None:
        logger.info(
            "Alert created",
            alert_id=alert.id,
            rule_id=alert.rule_id,
            severity=alert.severity.value,
        )
        if self.metrics:
            self.metrics.record_alert_created(alert.type.value, alert.severity.value)
        await self.emit("alertCreated", alert)

    @staticmethod
    def _validate_rule(rule: AlertRule) -> None:
        field_errors: Dict[str, str] = {}
        if not rule.name:
            field_errors["name"] = "must not be empty"
        for index, condition in enumerate(rule.conditions):
            if condition.operator not in OPERATORS:
                field_errors[f"conditions[{index}].operator"] = (
                    f"unsupported operator '{condition.operator}'"
                )
            if condition.aggregation not in AGGREGATIONS:
                field_errors[f"conditions[{index}].aggregation"] = (
                    f"unsupported aggregation '{condition.aggregation}'"
                )
            if condition.time_window <= 0:
                field_errors[f"conditions[{index}].time_window"] = "must be positive"
        if field_errors:
            raise ValidationError("Invalid alert rule", field_errors=field_errors)
