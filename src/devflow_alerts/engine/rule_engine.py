"""
Rule engine implementation.

Pure evaluation logic: aggregates metric windows, tests rule conditions,
classifies severity and drafts alert content and recommendations. Nothing
here touches storage, and evaluation errors never escape
``evaluate_condition`` / ``evaluate_rule``.
"""

import operator
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from ..models import (
    Alert,
    AlertCondition,
    AlertContext,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    AlertType,
    MetricData,
    MLAnomalyResult,
    Recommendation,
    RecommendationType,
    TimeRange,
    new_id,
    utcnow,
)

logger = structlog.get_logger(__name__, component="rule_engine")

ML_ANOMALY_RULE_ID = "ml_anomaly_detection"

_COMPARATORS: Dict[str, Callable[[float, float], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
    "ne": operator.ne,
}

_AGGREGATORS: Dict[str, Callable[[List[float]], float]] = {
    "avg": lambda values: sum(values) / len(values),
    "sum": lambda values: float(sum(values)),
    "min": lambda values: float(min(values)),
    "max": lambda values: float(max(values)),
    "count": lambda values: float(len(values)),
}

# (deviation lower bound, severity), checked in order
_DEVIATION_BANDS = (
    (0.5, AlertSeverity.CRITICAL),
    (0.3, AlertSeverity.HIGH),
    (0.1, AlertSeverity.MEDIUM),
)

_CONFIDENCE_BANDS = (
    (0.9, AlertSeverity.CRITICAL),
    (0.7, AlertSeverity.HIGH),
    (0.5, AlertSeverity.MEDIUM),
)

_RECOMMENDATIONS = {
    AlertType.PRODUCTIVITY_ANOMALY: (
        RecommendationType.ACTION,
        "Review Recent Changes",
        "Look at recent changes to workflow, tooling or team composition that "
        "may explain the shift in productivity.",
        "Identify the cause of the productivity change",
    ),
    AlertType.QUALITY_THRESHOLD: (
        RecommendationType.ACTION,
        "Code Review Focus",
        "Increase code review depth and test coverage for the affected area.",
        "Reduce defects reaching production",
    ),
    AlertType.FLOW_INTERRUPTION: (
        RecommendationType.ACTION,
        "Minimize Interruptions",
        "Block focus time and batch meetings to protect uninterrupted work.",
        "Restore sustained focus time",
    ),
}

_DEFAULT_RECOMMENDATION = (
    RecommendationType.INSIGHT,
    "Monitor Trends",
    "Keep an eye on this metric over the coming days to see whether the "
    "pattern persists.",
    None,
)


class RuleEngine:
    """
    Evaluates alert rules against metric samples.

    Args:
        clock: Callable returning the current UTC time, used for time windows
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utcnow

    def evaluate_condition(
        self, condition: AlertCondition, metrics: Iterable[MetricData]
    ) -> bool:
        """Aggregate the condition's metric window and compare it to the threshold."""
        try:
            window = self._window(condition, metrics, self._clock())
            if not window:
                return False

            aggregate = _AGGREGATORS.get(condition.aggregation)
            compare = _COMPARATORS.get(condition.operator)
            if aggregate is None or compare is None:
                logger.warning(
                    "Unsupported condition",
                    condition_id=condition.id,
                    operator=condition.operator,
                    aggregation=condition.aggregation,
                )
                return False

            value = aggregate([m.value for m in window])
            return bool(compare(value, condition.threshold))
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Failed to evaluate condition", condition_id=condition.id, error=str(e)
            )
            return False

    def evaluate_rule(
        self, rule: AlertRule, metrics: Iterable[MetricData]
    ) -> Optional[Alert]:
        """Return a new alert when every condition of an enabled rule holds."""
        if not rule.enabled or not rule.conditions:
            return None

        try:
            metrics = list(metrics)
            for condition in rule.conditions:
                if not self.evaluate_condition(condition, metrics):
                    return None

            now = self._clock()
            relevant: List[MetricData] = []
            seen = set()
            for condition in rule.conditions:
                for metric in self._window(condition, metrics, now):
                    if id(metric) not in seen:
                        seen.add(id(metric))
                        relevant.append(metric)
            if not relevant:
                return None

            context = self._build_context(relevant)
            metric_types = list(dict.fromkeys(m.type for m in relevant))

            return Alert(
                id=new_id(),
                rule_id=rule.id,
                type=rule.type,
                severity=rule.severity,
                status=AlertStatus.ACTIVE,
                title=f"{rule.name}: {', '.join(metric_types)}",
                message=self._format_rule_message(rule, context),
                context=context,
                recommendations=self.generate_recommendations(rule, context),
                triggered_at=now,
                escalation_level=0,
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("Failed to evaluate rule", rule_id=rule.id, error=str(e))
            return None

    def evaluate_rules(
        self, metrics: Iterable[MetricData], rules: Iterable[AlertRule]
    ) -> List[Alert]:
        """Evaluate every enabled rule; a failing rule is skipped."""
        metrics = list(metrics)
        alerts: List[Alert] = []
        for rule in rules:
            if not rule.enabled:
                continue
            try:
                alert = self.evaluate_rule(rule, metrics)
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.error(
                    "Skipping rule after evaluation error", rule_id=rule.id, error=str(e)
                )
                continue
            if alert is not None:
                alerts.append(alert)
        return alerts

    def classify_severity(
        self, rule: AlertRule, value: float, threshold: float
    ) -> AlertSeverity:
        """Classify severity from the relative deviation of value from threshold."""
        if threshold == 0:
            return AlertSeverity.LOW if value == 0 else AlertSeverity.CRITICAL

        # Rounded so that band edges such as 0.3 are not lost to float noise
        deviation = round(abs(value - threshold) / abs(threshold), 9)
        for lower_bound, severity in _DEVIATION_BANDS:
            if deviation >= lower_bound:
                return severity
        return AlertSeverity.LOW

    def generate_ml_anomaly_alert(
        self, anomaly_result: MLAnomalyResult, context: AlertContext
    ) -> Alert:
        """Draft an alert from a pre-computed anomaly detection."""
        severity = AlertSeverity.LOW
        for lower_bound, band_severity in _CONFIDENCE_BANDS:
            if anomaly_result.confidence >= lower_bound:
                severity = band_severity
                break

        factors = anomaly_result.contributing_factors
        message = (
            f"Anomaly detected with {anomaly_result.confidence * 100:.1f}% confidence. "
            f"Expected: {anomaly_result.expected_value:.2f}, "
            f"Actual: {anomaly_result.actual_value:.2f}. "
            f"Contributing factors: {', '.join(factors) if factors else 'none identified'}"
        )

        alert_context = AlertContext(
            user_id=context.user_id,
            team_id=context.team_id,
            project_id=context.project_id,
            metric_values=dict(context.metric_values),
            time_range=context.time_range,
            additional_data={
                **context.additional_data,
                "anomaly_score": anomaly_result.anomaly_score,
                "confidence": anomaly_result.confidence,
                "contributing_factors": list(factors),
            },
        )

        recommendations = [
            Recommendation(
                type=RecommendationType.ACTION,
                title="Investigate Root Cause",
                description=(
                    "Investigate the main contributing factors: "
                    f"{', '.join(factors[:3]) if factors else 'unknown'}"
                ),
                priority=1,
                estimated_impact="Pinpoint what is driving the anomaly",
            )
        ]
        if anomaly_result.confidence > 0.8:
            recommendations.append(
                Recommendation(
                    type=RecommendationType.ACTION,
                    title="Immediate Attention Required",
                    description=(
                        "The anomaly was detected with high confidence and should "
                        "be reviewed right away."
                    ),
                    priority=0,
                )
            )

        return Alert(
            id=new_id(),
            rule_id=ML_ANOMALY_RULE_ID,
            type=AlertType.PRODUCTIVITY_ANOMALY,
            severity=severity,
            status=AlertStatus.ACTIVE,
            title="Productivity Anomaly Detected",
            message=message,
            context=alert_context,
            recommendations=recommendations,
            triggered_at=self._clock(),
            escalation_level=0,
        )

    def generate_recommendations(
        self, rule: AlertRule, context: AlertContext
    ) -> List[Recommendation]:
        """Return the single recommendation associated with the rule's type."""
        rec_type, title, description, impact = _RECOMMENDATIONS.get(
            rule.type, _DEFAULT_RECOMMENDATION
        )
        return [
            Recommendation(
                type=rec_type,
                title=title,
                description=description,
                priority=1,
                estimated_impact=impact,
            )
        ]

    @staticmethod
    def _window(
        condition: AlertCondition, metrics: Iterable[MetricData], now: datetime
    ) -> List[MetricData]:
        window_start = now - timedelta(minutes=condition.time_window)
        return [
            m
            for m in metrics
            if m.type == condition.metric_type and m.timestamp >= window_start
        ]

    @staticmethod
    def _build_context(relevant: List[MetricData]) -> AlertContext:
        first = relevant[0]
        snapshot: Dict[str, float] = {}
        latest: Dict[str, datetime] = {}
        for metric in relevant:
            if metric.type not in latest or metric.timestamp >= latest[metric.type]:
                latest[metric.type] = metric.timestamp
                snapshot[metric.type] = metric.value

        timestamps = [m.timestamp for m in relevant]
        return AlertContext(
            user_id=first.user_id,
            team_id=first.team_id,
            project_id=first.project_id,
            metric_values=snapshot,
            time_range=TimeRange(start=min(timestamps), end=max(timestamps)),
        )

    @staticmethod
    def _format_rule_message(rule: AlertRule, context: AlertContext) -> str:
        values = ", ".join(
            f"{name}={value:.2f}" for name, value in context.metric_values.items()
        )
        lead = rule.description or f"Rule '{rule.name}' was triggered"
        return f"{lead}. Current values: {values}"
