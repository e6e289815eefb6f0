"""Broadcast system notifications with read tracking and feedback."""

from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore, where
from ..effects import run_effects
from ..errors import NotFoundError, ValidationError
from ..users import UserDirectory
from .dispatcher import NotificationDispatcher
from .schemas import (
    DeliveryStats,
    FeedbackResponse,
    FeedbackSummary,
    NotificationType,
    SystemNotification,
    SystemNotificationCreate,
    SystemNotificationSummary,
    SystemNotificationType,
)

logger = structlog.get_logger("equiplend")


class SystemNotificationService:
    """Creates announcements for every active user and tracks who read them."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        directory: UserDirectory,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.directory = directory
        self.clock = clock or SystemClock()

    def create(self, data: dict[str, Any], admin_id: str) -> SystemNotification:
        """Create a notification and deliver it to every approved user.

        Recipients are fixed at creation. Per-user delivery is best effort.

        Raises:
            ValidationError: If title or content are missing or too long
        """
        try:
            payload = SystemNotificationCreate.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid system notification", e) from e

        recipients = self.directory.list_active_user_ids()
        notification = SystemNotification(
            title=payload.title,
            content=payload.content,
            type=payload.type,
            priority=payload.priority,
            created_by=admin_id,
            created_at=self.clock.now(),
            expires_at=payload.expires_at,
            feedback_enabled=payload.feedback_enabled,
            feedback_question=payload.feedback_question,
            sent_to=recipients,
        )
        doc = self.store.add(Collections.SYSTEM_NOTIFICATIONS, notification.to_document())
        notification.id = doc["id"]

        extra = {
            "systemNotificationId": notification.id,
            "type": payload.type.value,
            "priority": payload.priority.value,
        }
        failed = run_effects(
            (
                f"notify:{user_id}",
                lambda user_id=user_id: self.dispatcher.notify_user(
                    user_id,
                    NotificationType.SYSTEM_NOTIFICATION,
                    payload.title,
                    payload.content,
                    extra,
                    payload.priority,
                ),
            )
            for user_id in recipients
        )
        logger.info(
            "system_notification_created",
            notification_id=notification.id,
            recipients=len(recipients),
            failed=len(failed),
        )
        return notification

    def get(self, notification_id: str) -> SystemNotification:
        doc = self.store.get(Collections.SYSTEM_NOTIFICATIONS, notification_id)
        if not doc:
            raise NotFoundError("System notification", notification_id)
        return SystemNotification.from_document(doc)

    def list_notifications(
        self, type: Optional[SystemNotificationType] = None
    ) -> list[SystemNotificationSummary]:
        """All notifications, newest first, with delivery stats."""
        conditions = [where("type", "==", type.value)] if type else []
        docs = self.store.query(
            Collections.SYSTEM_NOTIFICATIONS,
            conditions,
            order_by="createdAt",
            descending=True,
        )
        summaries = []
        for doc in docs:
            n = SystemNotification.from_document(doc)
            summaries.append(
                SystemNotificationSummary(
                    notification=n,
                    delivery_stats=DeliveryStats(
                        sent=len(n.sent_to),
                        read=len(n.read_by),
                        responded=len(n.responses),
                    ),
                )
            )
        return summaries

    def unread_for(self, user_id: str) -> list[SystemNotification]:
        """Unexpired notifications sent to a user that they have not read."""
        now = self.clock.now()
        return [
            s.notification
            for s in self.list_notifications()
            if user_id in s.notification.sent_to
            and user_id not in s.notification.read_by
            and not s.notification.is_expired(now)
        ]

    def mark_read(self, notification_id: str, user_id: str) -> None:
        """Record that a user read a notification. Repeat calls are no-ops."""
        notification = self.get(notification_id)
        if user_id in notification.read_by:
            return
        self.store.update(
            Collections.SYSTEM_NOTIFICATIONS,
            notification_id,
            {"readBy": [*notification.read_by, user_id]},
            expect={"readBy": notification.read_by},
        )

    def submit_feedback(
        self, notification_id: str, user_id: str, response: str
    ) -> FeedbackResponse:
        """Append a user's answer to a feedback request."""
        notification = self.get(notification_id)
        if not notification.feedback_enabled:
            raise ValidationError("This notification does not accept feedback")
        response = response.strip()
        if not response:
            raise ValidationError("Feedback response cannot be empty")

        entry = FeedbackResponse(
            user_id=user_id, response=response, timestamp=self.clock.now()
        )
        existing = [r.model_dump(mode="json", by_alias=True) for r in notification.responses]
        self.store.update(
            Collections.SYSTEM_NOTIFICATIONS,
            notification_id,
            {"responses": [*existing, entry.model_dump(mode="json", by_alias=True)]},
            expect={"responses": existing},
        )
        return entry

    def feedback(self, notification_id: str) -> FeedbackSummary:
        notification = self.get(notification_id)
        return FeedbackSummary(
            feedback_question=notification.feedback_question,
            responses=notification.responses,
            total_responses=len(notification.responses),
        )
