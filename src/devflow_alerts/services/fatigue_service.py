"""
Alert fatigue management.

Suppresses alerts that fall inside a maintenance window or that would reach a
user who is already receiving more alerts than they can act on. Feedback on
alert relevance shifts each user's fatigue threshold per alert type.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import FatigueConfig
from ..events import EventEmitter
from ..interfaces import FatigueRepository
from ..models import (
    Alert,
    AlertFeedback,
    AlertType,
    FatigueMetrics,
    FeedbackAnalysis,
    FeedbackRelevance,
    MaintenanceWindow,
    RecurrencePattern,
    RecurrenceType,
    new_id,
    utcnow,
)

logger = structlog.get_logger(__name__, component="fatigue_service")

_RELEVANCE_SCORES = {
    FeedbackRelevance.VERY_RELEVANT: 1.0,
    FeedbackRelevance.RELEVANT: 0.75,
    FeedbackRelevance.SOMEWHAT_RELEVANT: 0.5,
    FeedbackRelevance.NOT_RELEVANT: 0.0,
}

MAX_THRESHOLD_ADJUSTMENT = 5.0


class AlertFatigueService(EventEmitter):
    """
    Decides whether an alert should be held back from a user.

    Events: ``alertSuppressed(alert, reason)``, ``feedbackProcessed(feedback)``,
    ``maintenanceWindowCreated``, ``maintenanceWindowUpdated``,
    ``maintenanceWindowDeleted``.
    """

    def __init__(
        self,
        repository: FatigueRepository,
        config: Optional[FatigueConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__()
        self.repository = repository
        self.config = config or FatigueConfig()
        self._clock = clock or utcnow
        self._adaptive_thresholds: Dict[str, float] = {}

    async def should_suppress_alert(self, alert: Alert) -> bool:
        """Return True when the alert should not reach its user."""
        user_id = alert.context.user_id
        if not user_id:
            return False

        if await self._is_in_maintenance_window(alert):
            logger.info("Alert suppressed by maintenance window", alert_id=alert.id)
            await self.emit("alertSuppressed", alert, "maintenance_window")
            return True

        if await self._is_user_fatigued(user_id):
            logger.info("Alert suppressed by user fatigue", alert_id=alert.id, user_id=user_id)
            await self.emit("alertSuppressed", alert, "user_fatigue")
            return True

        await self._update_user_alert_count(user_id, alert)
        return False

    async def record_alert_feedback(
        self, feedback: AlertFeedback, alert_type: AlertType
    ) -> None:
        """Fold feedback into the user's analysis and adapt their threshold."""
        analysis = await self._update_feedback_analysis(feedback, alert_type)

        if self.config.adaptive_threshold_enabled:
            new_threshold = max(
                1.0, self.config.fatigue_threshold + analysis.recommended_threshold_adjustment
            )
            self._adaptive_thresholds[f"{feedback.user_id}:{alert_type.value}"] = new_threshold
            if await self.repository.get_fatigue_metrics(feedback.user_id):
                await self.repository.update_fatigue_metrics(
                    feedback.user_id, {"adaptive_threshold": new_threshold}
                )

        await self.emit("feedbackProcessed", feedback)

    async def create_maintenance_window(
        self,
        name: str,
        start: datetime,
        end: datetime,
        recurrence: Optional[RecurrencePattern] = None,
        affected_rules: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> MaintenanceWindow:
        window = MaintenanceWindow(
            id=new_id(),
            name=name,
            start=start,
            end=end,
            recurrence=recurrence,
            affected_rules=list(affected_rules or []),
            created_by=created_by,
        )
        await self.repository.save_maintenance_window(window)
        logger.info("Maintenance window created", window_id=window.id, name=name)
        await self.emit("maintenanceWindowCreated", window)
        return window

    async def update_maintenance_window(
        self, window_id: str, updates: Dict[str, Any]
    ) -> Optional[MaintenanceWindow]:
        window = await self.repository.get_maintenance_window(window_id)
        if window is None:
            return None
        for key, value in updates.items():
            setattr(window, key, value)
        await self.repository.save_maintenance_window(window)
        await self.emit("maintenanceWindowUpdated", window)
        return window

    async def delete_maintenance_window(self, window_id: str) -> bool:
        deleted = await self.repository.delete_maintenance_window(window_id)
        if deleted:
            await self.emit("maintenanceWindowDeleted", window_id)
        return deleted

    async def get_active_maintenance_windows(
        self, at: Optional[datetime] = None
    ) -> List[MaintenanceWindow]:
        """Windows in effect at ``at`` (default: now)."""
        moment = at or self._clock()
        windows = await self.repository.get_maintenance_windows()
        return [w for w in windows if self._is_time_in_window(moment, w)]

    async def get_fatigue_metrics(self, user_id: str) -> Optional[FatigueMetrics]:
        return await self.repository.get_fatigue_metrics(user_id)

    async def get_feedback_analysis(
        self, user_id: str, alert_type: AlertType
    ) -> Optional[FeedbackAnalysis]:
        return await self.repository.get_feedback_analysis(user_id, alert_type)

    async def calculate_fatigue_score(self, user_id: str) -> float:
        """Alert density over the threshold, decayed by time since the last alert."""
        metrics = await self.repository.get_fatigue_metrics(user_id)
        if metrics is None:
            return 0.0
        return self._score(metrics, self._clock())

    async def get_adaptive_threshold(self, user_id: str, alert_type: AlertType) -> float:
        cache_key = f"{user_id}:{alert_type.value}"
        if cache_key in self._adaptive_thresholds:
            return self._adaptive_thresholds[cache_key]

        analysis = await self.repository.get_feedback_analysis(user_id, alert_type)
        if analysis is None:
            return self.config.fatigue_threshold

        threshold = max(
            1.0, self.config.fatigue_threshold + analysis.recommended_threshold_adjustment
        )
        self._adaptive_thresholds[cache_key] = threshold
        return threshold

    def _score(self, metrics: FatigueMetrics, now: datetime) -> float:
        window_seconds = self.config.time_window_minutes * 60
        elapsed = (now - metrics.last_alert_time).total_seconds()
        time_decay = max(0.0, 1 - elapsed / window_seconds)
        density = metrics.alert_count / self.config.fatigue_threshold
        return min(1.0, density * time_decay)

    async def _is_user_fatigued(self, user_id: str) -> bool:
        metrics = await self.repository.get_fatigue_metrics(user_id)
        if metrics is None:
            return False

        score = self._score(metrics, self._clock())
        threshold = (
            metrics.adaptive_threshold
            if self.config.adaptive_threshold_enabled
            else self.config.fatigue_threshold
        )
        return score >= threshold / self.config.fatigue_threshold

    async def _update_user_alert_count(self, user_id: str, alert: Alert) -> None:
        now = self._clock()
        window_start = now - timedelta(minutes=self.config.time_window_minutes)

        metrics = await self.repository.get_fatigue_metrics(user_id)
        if metrics is None:
            metrics = FatigueMetrics(
                user_id=user_id,
                alert_count=1,
                time_window=self.config.time_window_minutes,
                last_alert_time=now,
                adaptive_threshold=self.config.fatigue_threshold,
            )
        else:
            # Count restarts once the previous alert falls out of the window
            if metrics.last_alert_time < window_start:
                metrics.alert_count = 1
            else:
                metrics.alert_count += 1
            metrics.last_alert_time = now

        metrics.fatigue_score = self._score(metrics, now)
        if self.config.adaptive_threshold_enabled:
            metrics.adaptive_threshold = await self.get_adaptive_threshold(
                user_id, alert.type
            )

        await self.repository.save_fatigue_metrics(metrics)

    async def _is_in_maintenance_window(self, alert: Alert) -> bool:
        if not self.config.maintenance_window_enabled:
            return False

        now = self._clock()
        for window in await self.repository.get_maintenance_windows():
            if self._is_time_in_window(now, window) and self._is_rule_affected(
                alert.rule_id, window
            ):
                return True
        return False

    @classmethod
    def _is_time_in_window(cls, moment: datetime, window: MaintenanceWindow) -> bool:
        recurrence = window.recurrence
        if recurrence is None:
            return window.start <= moment <= window.end

        if recurrence.type == RecurrenceType.DAILY:
            return cls._is_time_in_daily_window(moment, window)
        if recurrence.type == RecurrenceType.WEEKLY:
            if moment.weekday() not in recurrence.days_of_week:
                return False
            return cls._is_time_in_daily_window(moment, window)
        if recurrence.type == RecurrenceType.MONTHLY:
            if recurrence.day_of_month and moment.day != recurrence.day_of_month:
                return False
            return cls._is_time_in_daily_window(moment, window)
        return False

    @staticmethod
    def _is_time_in_daily_window(moment: datetime, window: MaintenanceWindow) -> bool:
        current = moment.hour * 60 + moment.minute
        start = window.start.hour * 60 + window.start.minute
        end = window.end.hour * 60 + window.end.minute

        # Equal start and end times of day cover that single minute
        if end >= start:
            return start <= current <= end
        # Crosses midnight
        return current >= start or current <= end

    @staticmethod
    def _is_rule_affected(rule_id: str, window: MaintenanceWindow) -> bool:
        return not window.affected_rules or rule_id in window.affected_rules

    async def _update_feedback_analysis(
        self, feedback: AlertFeedback, alert_type: AlertType
    ) -> FeedbackAnalysis:
        relevance = _RELEVANCE_SCORES.get(feedback.relevance, 0.5)
        action_taken = 1.0 if feedback.action_taken else 0.0
        false_positive = 1.0 if feedback.relevance == FeedbackRelevance.NOT_RELEVANT else 0.0

        analysis = await self.repository.get_feedback_analysis(feedback.user_id, alert_type)
        if analysis is None:
            analysis = FeedbackAnalysis(
                user_id=feedback.user_id,
                alert_type=alert_type,
                relevance_score=relevance,
                action_taken_rate=action_taken,
                false_positive_rate=false_positive,
            )
        else:
            # Exponential running averages with weight 1/2
            analysis.relevance_score = (analysis.relevance_score + relevance) / 2
            analysis.action_taken_rate = (analysis.action_taken_rate + action_taken) / 2
            analysis.false_positive_rate = (
                analysis.false_positive_rate + false_positive
            ) / 2

        analysis.recommended_threshold_adjustment = self._threshold_adjustment(analysis)
        await self.repository.save_feedback_analysis(analysis)
        logger.debug(
            "Feedback analysis updated",
            user_id=feedback.user_id,
            alert_type=alert_type.value,
            adjustment=analysis.recommended_threshold_adjustment,
        )
        return analysis

    @staticmethod
    def _threshold_adjustment(analysis: FeedbackAnalysis) -> float:
        # False positives raise the threshold, relevant acted-on alerts lower it
        penalty = analysis.false_positive_rate * 2
        bonus = analysis.relevance_score * analysis.action_taken_rate
        adjustment = penalty - bonus
        return max(-MAX_THRESHOLD_ADJUSTMENT, min(MAX_THRESHOLD_ADJUSTMENT, adjustment))
