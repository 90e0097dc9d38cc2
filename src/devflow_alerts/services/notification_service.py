"""
Notification delivery service.

Renders channel templates for an alert, dispatches through the registered
providers, records one delivery per (alert, channel, recipient) and retries
failed deliveries on a background schedule.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

import structlog

from ..cache import LRUCache
from ..config import NotificationServiceConfig
from ..events import EventEmitter
from ..exceptions import AlertNotFoundError, TemplateNotFoundError, ValidationError
from ..interfaces import NotificationProvider, NotificationRepository, TemplateRepository
from ..metrics import AlertingMetricsCollector
from ..models import (
    Alert,
    AlertType,
    BulkNotification,
    DeliveryStatus,
    NotificationChannel,
    NotificationDelivery,
    NotificationResult,
    NotificationTemplate,
    new_id,
    utcnow,
)
from ..templating import TEMPLATE_VARIABLES

logger = structlog.get_logger(__name__, component="notification_service")

AlertLookup = Callable[[str], Awaitable[Optional[Alert]]]


def _cache_key(channel: NotificationChannel, alert_type: AlertType) -> str:
    return f"{channel.value}:{alert_type.value}"


class NotificationService(EventEmitter):
    """
    Multi-channel notification dispatcher with retry.

    Events: ``deliverySuccess(delivery, result)``,
    ``deliveryFailed(delivery, error)``, ``deliveryRetrySuccess(delivery, result)``,
    ``deliveryRetryFailed(delivery, error)``, ``deliveryExhausted(delivery)``.

    Args:
        notification_repository: Storage for delivery records
        template_repository: Storage for templates
        config: Retry, batching and cache settings
        alert_lookup: Coroutine resolving an alert id, used when retrying
        metrics: Optional Prometheus collector
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        template_repository: TemplateRepository,
        config: Optional[NotificationServiceConfig] = None,
        alert_lookup: Optional[AlertLookup] = None,
        metrics: Optional[AlertingMetricsCollector] = None,
    ):
        super().__init__()
        self.notification_repository = notification_repository
        self.template_repository = template_repository
        self.config = config or NotificationServiceConfig()
        self.alert_lookup = alert_lookup
        self.metrics = metrics
        self._providers: Dict[NotificationChannel, NotificationProvider] = {}
        self._template_cache: LRUCache[NotificationTemplate] = LRUCache(
            self.config.template_cache_size
        )
        self._stop: Optional[asyncio.Event] = None
        self._retry_task: Optional[asyncio.Task] = None

    def register_provider(self, provider: NotificationProvider) -> None:
        """Register a provider, replacing any existing one for its channel."""
        channel = provider.get_channel_type()
        if channel in self._providers:
            logger.info("Replacing notification provider", channel=channel.value)
        self._providers[channel] = provider

    def get_provider(self, channel: NotificationChannel) -> Optional[NotificationProvider]:
        return self._providers.get(channel)

    @property
    def channels(self) -> List[NotificationChannel]:
        return list(self._providers)

    async def send_notification(
        self,
        alert: Alert,
        channels: Sequence[NotificationChannel],
        recipients: Mapping[NotificationChannel, Sequence[str]],
    ) -> List[NotificationDelivery]:
        """
        Send an alert to every recipient of every channel.

        Channels without a registered provider are skipped and get no delivery
        record. Provider failures never raise; they produce failed deliveries.
        """
        sends = []
        for channel in channels:
            provider = self._providers.get(channel)
            if provider is None:
                logger.warning(
                    "No provider registered for channel",
                    channel=channel.value,
                    alert_id=alert.id,
                )
                continue
            for recipient in recipients.get(channel, ()):
                sends.append(self._deliver(alert, channel, recipient, provider))

        if not sends:
            return []
        return list(await asyncio.gather(*sends))

    async def send_bulk_notifications(
        self, notifications: Sequence[BulkNotification]
    ) -> List[NotificationDelivery]:
        """Send in fixed-size batches: concurrent within a batch, sequential across."""
        deliveries: List[NotificationDelivery] = []
        batch_size = self.config.batch_size
        for start in range(0, len(notifications), batch_size):
            batch = notifications[start : start + batch_size]
            results = await asyncio.gather(
                *(
                    self.send_notification(n.alert, n.channels, n.recipients)
                    for n in batch
                )
            )
            for batch_deliveries in results:
                deliveries.extend(batch_deliveries)
        return deliveries

    async def retry_failed_deliveries(self) -> List[NotificationDelivery]:
        """Retry failed deliveries that have not yet used up their retries."""
        max_retries = self.config.max_retries
        failed = [
            d
            for d in await self.notification_repository.get_failed_deliveries(max_retries)
            if d.retry_count < max_retries
        ]
        if not failed:
            return []

        logger.info("Retrying failed deliveries", count=len(failed))
        retried: List[NotificationDelivery] = []
        batch_size = self.config.batch_size
        for start in range(0, len(failed), batch_size):
            batch = failed[start : start + batch_size]
            retried.extend(await asyncio.gather(*(self._retry(d) for d in batch)))
        return retried

    async def start(self) -> None:
        """Start the periodic retry loop."""
        if self._retry_task and not self._retry_task.done():
            return
        self._stop = asyncio.Event()
        self._retry_task = asyncio.create_task(self._run_retries())

    async def destroy(self) -> None:
        """Stop the retry loop and detach every listener."""
        if self._retry_task:
            if self._stop:
                self._stop.set()
            self._retry_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._retry_task
            self._retry_task = None
        self.remove_all_listeners()

    async def get_template(
        self, channel: NotificationChannel, alert_type: AlertType
    ) -> Optional[NotificationTemplate]:
        """Resolve a template through the LRU cache."""
        key = _cache_key(channel, alert_type)
        template = self._template_cache.get(key)
        if template is not None:
            return template

        template = await self.template_repository.get_template(channel, alert_type)
        if template is not None:
            self._template_cache.set(key, template)
        return template

    async def create_template(
        self, template_data: Union[NotificationTemplate, Mapping[str, Any]]
    ) -> NotificationTemplate:
        if isinstance(template_data, NotificationTemplate):
            template = template_data
        else:
            try:
                template = NotificationTemplate.from_dict(dict(template_data))
            except (KeyError, ValueError) as e:
                raise ValidationError(f"Invalid template definition: {e}") from e

        template.id = new_id()
        self._warn_unknown_variables(template)
        await self.template_repository.save_template(template)
        self._template_cache.delete(_cache_key(template.channel, template.alert_type))
        logger.info(
            "Template created",
            template_id=template.id,
            channel=template.channel.value,
            alert_type=template.alert_type.value,
        )
        return template

    async def update_template(
        self, template_id: str, updates: Dict[str, Any]
    ) -> Optional[NotificationTemplate]:
        existing = await self.template_repository.get_template_by_id(template_id)
        if existing is None:
            return None

        patch = {k: v for k, v in updates.items() if k != "id"}
        await self.template_repository.update_template(template_id, patch)
        updated = await self.template_repository.get_template_by_id(template_id)

        # Channel or alert type may have moved, so both keys go
        self._template_cache.delete(_cache_key(existing.channel, existing.alert_type))
        if updated is not None:
            self._template_cache.delete(_cache_key(updated.channel, updated.alert_type))
            self._warn_unknown_variables(updated)
        return updated

    async def delete_template(self, template_id: str) -> bool:
        existing = await self.template_repository.get_template_by_id(template_id)
        if existing is None:
            return False
        deleted = await self.template_repository.delete_template(template_id)
        self._template_cache.delete(_cache_key(existing.channel, existing.alert_type))
        return deleted

    async def validate_providers(self) -> Dict[NotificationChannel, bool]:
        results: Dict[NotificationChannel, bool] = {}
        for channel, provider in self._providers.items():
            try:
                results[channel] = bool(await provider.validate_config())
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.warning(
                    "Provider validation failed", channel=channel.value, error=str(e)
                )
                results[channel] = False
        return results

    async def get_delivery_status(self, alert_id: str) -> List[NotificationDelivery]:
        return await self.notification_repository.get_deliveries(alert_id)

    async def _deliver(
        self,
        alert: Alert,
        channel: NotificationChannel,
        recipient: str,
        provider: NotificationProvider,
    ) -> NotificationDelivery:
        delivery = NotificationDelivery(
            id=new_id(),
            alert_id=alert.id,
            channel=channel,
            recipient=recipient,
            status=DeliveryStatus.PENDING,
        )
        await self.notification_repository.save_delivery(delivery)

        result = await self._attempt(alert, delivery, provider)
        await self._apply(delivery, self._result_updates(result))

        if result.success:
            await self.emit("deliverySuccess", delivery, result)
        else:
            await self.emit("deliveryFailed", delivery, result.error)
        return delivery

    async def _retry(self, delivery: NotificationDelivery) -> NotificationDelivery:
        retry_count = delivery.retry_count + 1

        alert = await self.alert_lookup(delivery.alert_id) if self.alert_lookup else None
        provider = self._providers.get(delivery.channel)
        if alert is None:
            result = NotificationResult(
                success=False, error=str(AlertNotFoundError(delivery.alert_id))
            )
        elif provider is None:
            result = NotificationResult(
                success=False,
                error=f"No provider registered for channel {delivery.channel.value}",
            )
        else:
            result = await self._attempt(alert, delivery, provider)

        updates = self._result_updates(result)
        updates["retry_count"] = retry_count
        await self._apply(delivery, updates)

        if self.metrics:
            self.metrics.record_retry(
                delivery.channel.value, "success" if result.success else "failure"
            )

        if result.success:
            logger.info("Delivery retry succeeded", delivery_id=delivery.id, retry_count=retry_count)
            await self.emit("deliveryRetrySuccess", delivery, result)
        else:
            await self.emit("deliveryRetryFailed", delivery, result.error)
            if retry_count >= self.config.max_retries:
                logger.error(
                    "Delivery retries exhausted",
                    delivery_id=delivery.id,
                    alert_id=delivery.alert_id,
                    channel=delivery.channel.value,
                    error=result.error,
                )
                await self.emit("deliveryExhausted", delivery)
        return delivery

    async def _attempt(
        self, alert: Alert, delivery: NotificationDelivery, provider: NotificationProvider
    ) -> NotificationResult:
        started = time.perf_counter()
        try:
            template = await self.get_template(delivery.channel, alert.type)
            if template is None:
                raise TemplateNotFoundError(delivery.channel.value, alert.type.value)
            result = await asyncio.wait_for(
                provider.send(alert, delivery.recipient, template),
                timeout=self.config.send_timeout_seconds,
            )
        except TemplateNotFoundError as e:
            logger.warning(str(e), alert_id=alert.id)
            result = NotificationResult(success=False, error=str(e))
        except asyncio.TimeoutError:
            result = NotificationResult(
                success=False,
                error=f"Provider timed out after {self.config.send_timeout_seconds}s",
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error(
                "Provider raised during send",
                channel=delivery.channel.value,
                alert_id=alert.id,
                error=str(e),
            )
            result = NotificationResult(success=False, error=str(e))

        if self.metrics:
            self.metrics.record_delivery(
                delivery.channel.value,
                "delivered" if result.success else "failed",
                (time.perf_counter() - started) * 1000,
            )
        return result

    @staticmethod
    def _result_updates(result: NotificationResult) -> Dict[str, Any]:
        if result.success:
            now = utcnow()
            return {
                "status": DeliveryStatus.DELIVERED,
                "sent_at": now,
                "delivered_at": result.delivered_at or now,
                "message_id": result.message_id,
                "error": None,
            }
        return {
            "status": DeliveryStatus.FAILED,
            "error": result.error or "Unknown delivery error",
        }

    async def _apply(self, delivery: NotificationDelivery, updates: Dict[str, Any]) -> None:
        await self.notification_repository.update_delivery(delivery.id, updates)
        for key, value in updates.items():
            setattr(delivery, key, value)

    async def _run_retries(self) -> None:
        assert self._stop is not None
        interval = self.config.retry_delay / 1000
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                try:
                    await self.retry_failed_deliveries()
                except Exception:  # pylint: disable=broad-exception-caught
                    logger.error("Retry sweep failed", exc_info=True)

    @staticmethod
    def _warn_unknown_variables(template: NotificationTemplate) -> None:
        unknown = [v for v in template.variables if v not in TEMPLATE_VARIABLES]
        if unknown:
            logger.warning(
                "Template declares variables the renderer does not provide",
                template_id=template.id,
                variables=unknown,
            )
