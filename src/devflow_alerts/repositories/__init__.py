"""Repository implementations."""

from .memory import (
    InMemoryAlertRepository,
    InMemoryAlertRuleRepository,
    InMemoryFatigueRepository,
    InMemoryInAppNotificationRepository,
    InMemoryNotificationRepository,
    InMemoryTemplateRepository,
)

__all__ = [
    "InMemoryAlertRepository",
    "InMemoryAlertRuleRepository",
    "InMemoryFatigueRepository",
    "InMemoryInAppNotificationRepository",
    "InMemoryNotificationRepository",
    "InMemoryTemplateRepository",
]
