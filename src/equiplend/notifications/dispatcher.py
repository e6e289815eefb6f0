"""Delivery of per-user notifications and webhook alerts.

Services decide what to say and to whom; a dispatcher only delivers.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import structlog

from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore, where
from .discord import DiscordWebhookClient
from .schemas import Notification, NotificationPriority, NotificationType, WebhookMessage

logger = structlog.get_logger("equiplend")


class NotificationDispatcher(ABC):
    """Delivers messages to users and to the configured webhook."""

    @abstractmethod
    def notify_user(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> None:
        """Deliver one message to one user."""

    @abstractmethod
    def send_webhook(self, message: WebhookMessage, url: Optional[str] = None) -> bool:
        """Post to a webhook.

        Returns:
            False when there is nowhere to send (``url`` is None)
        """

    def notify_users(
        self,
        user_ids: Iterable[str],
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> int:
        """Deliver the same message to several users. Returns the count sent."""
        sent = 0
        for user_id in user_ids:
            self.notify_user(user_id, type, title, message, data, priority)
            sent += 1
        return sent


class StoreNotificationDispatcher(NotificationDispatcher):
    """Writes in-app notifications to the store and posts webhooks to Discord."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Optional[Clock] = None,
        webhook_client: Optional[DiscordWebhookClient] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.webhook_client = webhook_client or DiscordWebhookClient()

    def notify_user(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> None:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
            priority=priority,
            created_at=self.clock.now(),
        )
        self.store.add(Collections.NOTIFICATIONS, notification.to_document())

    def send_webhook(self, message: WebhookMessage, url: Optional[str] = None) -> bool:
        if not url:
            logger.debug("webhook_skipped", reason="no webhook configured")
            return False
        self.webhook_client.send(url, message)
        return True

    def notifications_for(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        """A user's in-app notifications, newest first."""
        conditions = [where("userId", "==", user_id)]
        if unread_only:
            conditions.append(where("isRead", "==", False))
        docs = self.store.query(
            Collections.NOTIFICATIONS, conditions, order_by="createdAt", descending=True
        )
        return [Notification.from_document(d) for d in docs]

    def mark_read(self, notification_id: str) -> None:
        self.store.update(Collections.NOTIFICATIONS, notification_id, {"isRead": True})
