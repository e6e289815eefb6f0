"""Pydantic schemas for notifications."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..db.schemas import CamelModel, InputModel, StoreModel, Timestamp


class NotificationPriority(str, Enum):
    """Priority of a notification."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationType(str, Enum):
    """Kinds of in-app notification."""

    LOAN_REQUEST_CREATED = "loan_request_created"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_PICKED_UP = "loan_picked_up"
    LOAN_RETURNED = "loan_returned"
    LOAN_OVERDUE = "loan_overdue"
    STAFF_ACTION = "staff_action"
    DAMAGE_REPORTED = "damage_reported"
    SETTINGS_CHANGED = "settings_changed"
    SYSTEM_NOTIFICATION = "system_notification"


class Notification(StoreModel):
    """An in-app message to one user."""

    user_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    is_read: bool = False
    created_at: Timestamp


class WebhookMessage(BaseModel):
    """A webhook post: plain content plus optional Discord embeds."""

    content: str = ""
    embeds: list[dict[str, Any]] = Field(default_factory=list)
    username: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.content:
            payload["content"] = self.content
        if self.username:
            payload["username"] = self.username
        if self.embeds:
            payload["embeds"] = self.embeds
        return payload


class SystemNotificationType(str, Enum):
    """Kind of broadcast announcement."""

    ANNOUNCEMENT = "announcement"
    FEEDBACK_REQUEST = "feedback_request"
    ALERT = "alert"


class FeedbackResponse(CamelModel):
    """One user's answer to a feedback request."""

    user_id: str
    response: str
    timestamp: Timestamp


class SystemNotificationCreate(InputModel):
    """Schema for creating a system notification."""

    title: str = Field(..., min_length=1, max_length=100)
    content: str = Field(..., min_length=1, max_length=1000)
    type: SystemNotificationType = SystemNotificationType.ANNOUNCEMENT
    priority: NotificationPriority = NotificationPriority.MEDIUM
    expires_at: Optional[datetime] = None
    feedback_enabled: bool = False
    feedback_question: Optional[str] = Field(None, max_length=500)

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def drop_question_without_feedback(self) -> "SystemNotificationCreate":
        if not self.feedback_enabled:
            self.feedback_question = None
        return self


class SystemNotification(StoreModel):
    """A broadcast announcement with read tracking."""

    title: str
    content: str
    type: SystemNotificationType
    priority: NotificationPriority
    created_by: str
    created_at: Timestamp
    expires_at: Optional[Timestamp] = None
    feedback_enabled: bool = False
    feedback_question: Optional[str] = None
    sent_to: list[str] = Field(default_factory=list)
    read_by: list[str] = Field(default_factory=list)
    responses: list[FeedbackResponse] = Field(default_factory=list)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class DeliveryStats(BaseModel):
    """Counts for one system notification."""

    sent: int
    read: int
    responded: int


class SystemNotificationSummary(BaseModel):
    """A system notification with its delivery stats."""

    notification: SystemNotification
    delivery_stats: DeliveryStats


class FeedbackSummary(BaseModel):
    """Collected answers to a feedback request."""

    feedback_question: Optional[str]
    responses: list[FeedbackResponse]
    total_responses: int
