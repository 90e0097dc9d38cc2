"""Rule evaluation."""

from .rule_engine import ML_ANOMALY_RULE_ID, RuleEngine

__all__ = ["ML_ANOMALY_RULE_ID", "RuleEngine"]
