"""Prometheus metrics for alert evaluation and notification delivery."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict

from prometheus_client import Counter, Gauge, Histogram

# Alert lifecycle
_ALERTS_CREATED = Counter(
    "devflow_alerts_created_total",
    "Alerts created by type and severity",
    labelnames=["type", "severity"],
)
_ALERTS_SKIPPED = Counter(
    "devflow_alerts_skipped_total",
    "Candidate alerts not created, by reason",
    labelnames=["reason"],
)
_ALERT_TRANSITIONS = Counter(
    "devflow_alert_transitions_total",
    "Alert status transitions",
    labelnames=["status"],
)
_ALERT_ESCALATIONS = Counter(
    "devflow_alert_escalations_total",
    "Alert escalations by resulting level",
    labelnames=["level"],
)

# Notification delivery
_DELIVERIES = Counter(
    "devflow_notification_deliveries_total",
    "Notification deliveries by channel and outcome",
    labelnames=["channel", "status"],
)
_DELIVERY_RETRIES = Counter(
    "devflow_notification_retries_total",
    "Delivery retries by channel and outcome",
    labelnames=["channel", "outcome"],
)
_DELIVERY_LATENCY = Histogram(
    "devflow_notification_send_duration_ms",
    "Provider send latency in milliseconds",
    labelnames=["channel"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)
_IN_APP_CONNECTIONS = Gauge(
    "devflow_in_app_connections",
    "Live in-app notification connections",
)


class AlertingMetricsCollector:
    def __init__(self) -> None:
        # In-memory mirrors to provide summaries without scraping Prometheus
        self._alerts_created: Dict[str, int] = defaultdict(int)
        self._alerts_skipped: Dict[str, int] = defaultdict(int)
        self._deliveries: Dict[str, int] = defaultdict(int)
        self._retries: Dict[str, int] = defaultdict(int)

    def record_alert_created(self, alert_type: str, severity: str) -> None:
        _ALERTS_CREATED.labels(type=alert_type, severity=severity).inc()
        self._alerts_created[f"{alert_type}:{severity}"] += 1

    def record_alert_skipped(self, reason: str) -> None:
        _ALERTS_SKIPPED.labels(reason=reason).inc()
        self._alerts_skipped[reason] += 1

    def record_transition(self, status: str) -> None:
        _ALERT_TRANSITIONS.labels(status=status).inc()

    def record_escalation(self, level: int) -> None:
        _ALERT_ESCALATIONS.labels(level=str(level)).inc()

    def record_delivery(self, channel: str, status: str, duration_ms: float) -> None:
        _DELIVERIES.labels(channel=channel, status=status).inc()
        _DELIVERY_LATENCY.labels(channel=channel).observe(duration_ms)
        self._deliveries[f"{channel}:{status}"] += 1

    def record_retry(self, channel: str, outcome: str) -> None:
        _DELIVERY_RETRIES.labels(channel=channel, outcome=outcome).inc()
        self._retries[f"{channel}:{outcome}"] += 1

    def set_in_app_connections(self, count: int) -> None:
        _IN_APP_CONNECTIONS.set(count)

    def get_summary(self) -> Dict[str, Any]:
        return {
            "alerts_created": dict(self._alerts_created),
            "alerts_skipped": dict(self._alerts_skipped),
            "deliveries": dict(self._deliveries),
            "retries": dict(self._retries),
        }


__all__ = ["AlertingMetricsCollector"]
