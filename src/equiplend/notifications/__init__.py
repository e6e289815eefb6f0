"""In-app notifications, webhook alerts and system announcements."""

from .discord import DiscordError, DiscordRateLimitError, DiscordWebhookClient, validate_webhook_url
from .dispatcher import NotificationDispatcher, StoreNotificationDispatcher
from .schemas import (
    Notification,
    NotificationPriority,
    NotificationType,
    SystemNotification,
    SystemNotificationType,
    WebhookMessage,
)
from .system import SystemNotificationService

__all__ = [
    "DiscordError",
    "DiscordRateLimitError",
    "DiscordWebhookClient",
    "validate_webhook_url",
    "NotificationDispatcher",
    "StoreNotificationDispatcher",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "SystemNotification",
    "SystemNotificationType",
    "WebhookMessage",
    "SystemNotificationService",
]
