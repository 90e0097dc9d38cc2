"""
In-app notification provider.

Notifications are persisted through an ``InAppNotificationRepository`` and,
when real-time updates are on, pushed to the user's live connections as JSON
``{"event", "data", "timestamp"}`` envelopes. A connection is any object with
an async ``send_text(str)`` method, e.g. a Starlette ``WebSocket``.
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from ..config import InAppProviderConfig
from ..interfaces import InAppNotificationRepository
from ..metrics import AlertingMetricsCollector
from ..models import Alert, InAppNotification, NotificationChannel, new_id, utcnow
from ..templating import RenderedMessage, TemplateRenderer
from .base import BaseNotificationProvider


class InAppNotificationProvider(BaseNotificationProvider):
    """Stores notifications for a user and fans them out over live connections."""

    channel = NotificationChannel.IN_APP

    def __init__(
        self,
        repository: InAppNotificationRepository,
        config: Optional[InAppProviderConfig] = None,
        renderer: Optional[TemplateRenderer] = None,
        metrics: Optional[AlertingMetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(renderer)
        self.repository = repository
        self.config = config or InAppProviderConfig()
        self.metrics = metrics
        self._clock = clock or utcnow
        self._connections: Dict[str, Set[Any]] = defaultdict(set)
        self._connections_lock = asyncio.Lock()
        self._stop: Optional[asyncio.Event] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    async def validate_config(self) -> bool:
        return (
            self.config.default_expiration_days > 0
            and self.config.max_notifications_per_user > 0
        )

    async def start(self) -> None:
        """Start the periodic expiry sweep."""
        if self._cleanup_task and not self._cleanup_task.done():
            return
        self._stop = asyncio.Event()
        self._cleanup_task = asyncio.create_task(self._run_cleanup())

    async def stop(self) -> None:
        if not self._cleanup_task:
            return
        if self._stop:
            self._stop.set()
        try:
            await self._cleanup_task
        finally:
            self._cleanup_task = None

    async def add_connection(self, user_id: str, connection: Any) -> None:
        async with self._connections_lock:
            self._connections[user_id].add(connection)
            total = sum(len(c) for c in self._connections.values())
        self._log.debug("Connection added", user_id=user_id)
        if self.metrics:
            self.metrics.set_in_app_connections(total)

    async def remove_connection(self, user_id: str, connection: Any) -> None:
        async with self._connections_lock:
            connections = self._connections.get(user_id)
            if connections is not None:
                connections.discard(connection)
                if not connections:
                    del self._connections[user_id]
            total = sum(len(c) for c in self._connections.values())
        self._log.debug("Connection removed", user_id=user_id)
        if self.metrics:
            self.metrics.set_in_app_connections(total)

    async def get_connection_count(self, user_id: Optional[str] = None) -> int:
        async with self._connections_lock:
            if user_id is not None:
                return len(self._connections.get(user_id, ()))
            return sum(len(c) for c in self._connections.values())

    async def get_user_notifications(
        self, user_id: str, unread_only: bool = False, limit: Optional[int] = None
    ) -> List[InAppNotification]:
        return await self.repository.get_user_notifications(user_id, unread_only, limit)

    async def get_unread_count(self, user_id: str) -> int:
        return len(await self.repository.get_user_notifications(user_id, unread_only=True))

    async def mark_as_read(self, notification_id: str, user_id: str) -> bool:
        notification = await self.repository.get_notification(notification_id)
        if notification is None or notification.user_id != user_id:
            return False
        if notification.read:
            return True

        read_at = self._clock()
        await self.repository.update_notification(
            notification_id, {"read": True, "read_at": read_at}
        )
        await self._broadcast(
            user_id,
            "notification_read",
            {"id": notification_id, "readAt": read_at.isoformat()},
        )
        return True

    async def delete_notification(self, notification_id: str, user_id: str) -> bool:
        notification = await self.repository.get_notification(notification_id)
        if notification is None or notification.user_id != user_id:
            return False

        deleted = await self.repository.delete_notification(notification_id)
        if deleted:
            await self._broadcast(user_id, "notification_deleted", {"id": notification_id})
        return deleted

    async def cleanup_expired(self) -> int:
        removed = await self.repository.delete_expired(self._clock())
        if removed:
            self._log.info("Expired notifications removed", count=removed)
        return removed

    async def _deliver(
        self, alert: Alert, recipient: str, message: RenderedMessage
    ) -> Optional[str]:
        now = self._clock()
        notification = InAppNotification(
            id=new_id(),
            user_id=recipient,
            alert_id=alert.id,
            title=message.subject,
            message=message.body,
            severity=alert.severity,
            alert_type=alert.type,
            created_at=now,
            expires_at=now + timedelta(days=self.config.default_expiration_days),
            data={"recommendations": [r.to_dict() for r in alert.recommendations]},
        )
        await self.repository.save_notification(notification)
        await self._enforce_limit(recipient, keep=notification.id)
        await self._broadcast(recipient, "notification_created", notification.to_dict())
        return notification.id

    async def _enforce_limit(self, user_id: str, keep: str) -> None:
        notifications = await self.repository.get_user_notifications(user_id)
        others = [n for n in notifications if n.id != keep]
        # The notification just created always survives the trim
        for stale in others[self.config.max_notifications_per_user - 1 :]:
            await self.repository.delete_notification(stale.id)

    async def _broadcast(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        if not self.config.enable_real_time_updates:
            return

        # Snapshot so connects/disconnects are not blocked by slow sends
        async with self._connections_lock:
            targets = list(self._connections.get(user_id, ()))
        if not targets:
            return

        payload = json.dumps(
            {"event": event, "data": data, "timestamp": self._clock().isoformat()}
        )
        stale = []
        for connection in targets:
            try:
                await connection.send_text(payload)
            except Exception:  # pylint: disable=broad-exception-caught
                self._log.warning("Dropping broken connection", user_id=user_id, exc_info=True)
                stale.append(connection)

        for connection in stale:
            await self.remove_connection(user_id, connection)

    async def _run_cleanup(self) -> None:
        assert self._stop is not None
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self.config.cleanup_interval_seconds
                )
            except asyncio.TimeoutError:
                try:
                    await self.cleanup_expired()
                except Exception:  # pylint: disable=broad-exception-caught
                    self._log.error("Expired notification sweep failed", exc_info=True)
