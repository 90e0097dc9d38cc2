"""Assembles the alerting services from settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from .config import Settings
from .engine.rule_engine import RuleEngine
from .interfaces import NotificationProvider
from .metrics import AlertingMetricsCollector
from .providers import (
    EmailNotificationProvider,
    InAppNotificationProvider,
    SlackNotificationProvider,
    TeamsNotificationProvider,
    WebhookNotificationProvider,
)
from .repositories import (
    InMemoryAlertRepository,
    InMemoryAlertRuleRepository,
    InMemoryFatigueRepository,
    InMemoryInAppNotificationRepository,
    InMemoryNotificationRepository,
    InMemoryTemplateRepository,
)
from .services import (
    AlertFatigueService,
    AlertService,
    NotificationDispatcher,
    NotificationService,
)

logger = structlog.get_logger(__name__)


def build_providers(
    settings: Settings,
    in_app_provider: Optional[InAppNotificationProvider] = None,
) -> List[NotificationProvider]:
    """Instantiate a provider for every channel the settings configure."""
    providers: List[NotificationProvider] = []
    if settings.email is not None:
        providers.append(EmailNotificationProvider(settings.email))
    if settings.slack is not None:
        providers.append(SlackNotificationProvider(settings.slack))
    if settings.teams is not None:
        providers.append(TeamsNotificationProvider(settings.teams))
    if settings.webhook is not None:
        providers.append(WebhookNotificationProvider(settings.webhook))
    if in_app_provider is not None:
        providers.append(in_app_provider)
    return providers


@dataclass
class AlertingSystem:
    """Wired services plus the background tasks they own."""

    settings: Settings
    alert_service: AlertService
    notification_service: NotificationService
    dispatcher: NotificationDispatcher
    in_app_provider: InAppNotificationProvider
    fatigue_service: Optional[AlertFatigueService] = None
    metrics: AlertingMetricsCollector = field(default_factory=AlertingMetricsCollector)

    async def start(self) -> None:
        self.dispatcher.attach()
        await self.notification_service.start()
        await self.in_app_provider.start()
        logger.info(
            "Alerting system started",
            channels=[c.value for c in self.notification_service.channels],
        )

    async def stop(self) -> None:
        self.dispatcher.detach()
        await self.in_app_provider.stop()
        await self.notification_service.destroy()
        self.alert_service.remove_all_listeners()
        logger.info("Alerting system stopped")


def build_system(settings: Optional[Settings] = None) -> AlertingSystem:
    """
    Build an in-memory alerting system.

    Persistent deployments swap the in-memory repositories for their own
    implementations of the repository interfaces.
    """
    settings = settings or Settings()
    metrics = AlertingMetricsCollector()

    alert_repository = InMemoryAlertRepository()
    fatigue_service = (
        AlertFatigueService(InMemoryFatigueRepository(), settings.fatigue)
        if settings.fatigue.enabled
        else None
    )
    alert_service = AlertService(
        RuleEngine(),
        alert_repository,
        InMemoryAlertRuleRepository(),
        config=settings.alerts,
        fatigue_service=fatigue_service,
        metrics=metrics,
    )

    notification_service = NotificationService(
        InMemoryNotificationRepository(),
        InMemoryTemplateRepository(),
        config=settings.notifications,
        alert_lookup=alert_repository.get_alert,
        metrics=metrics,
    )
    in_app_provider = InAppNotificationProvider(
        InMemoryInAppNotificationRepository(), settings.in_app, metrics=metrics
    )
    for provider in build_providers(settings, in_app_provider):
        notification_service.register_provider(provider)

    dispatcher = NotificationDispatcher(
        alert_service, notification_service, settings.dispatcher
    )
    return AlertingSystem(
        settings=settings,
        alert_service=alert_service,
        notification_service=notification_service,
        dispatcher=dispatcher,
        in_app_provider=in_app_provider,
        fatigue_service=fatigue_service,
        metrics=metrics,
    )
