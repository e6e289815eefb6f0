"""SQLAlchemy ORM models for the local document store.

Tables:
- documents: every record of every collection, keyed by (collection, id),
  with the record body stored as JSON
"""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def generate_id() -> str:
    """Generate a document ID."""
    return uuid4().hex


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class Document(Base):
    """A single document in a named collection."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=generate_id)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Row bookkeeping, independent of any timestamps inside the body
    created_at: Mapped[str] = mapped_column(String(32), default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(
        String(32), default=utc_now_iso, onupdate=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<Document(collection={self.collection}, id={self.id})>"

    def to_dict(self) -> dict[str, Any]:
        """Body of the document with its ID merged in."""
        return {**self.data, "id": self.id}


class Collections:
    """Collection names shared by every service."""

    LOAN_REQUESTS = "loanRequests"
    EQUIPMENT = "equipment"
    USERS = "users"
    SETTINGS = "settings"
    CLOSED_DATES = "closedDates"
    CATEGORY_LIMITS = "categoryLimits"
    SETTINGS_AUDIT_LOG = "settingsAuditLog"
    SETTINGS_BACKUPS = "settingsBackups"
    SYSTEM_NOTIFICATIONS = "systemNotifications"
    NOTIFICATIONS = "notifications"
    STAFF_ACTIVITY_LOGS = "staffActivityLogs"
    DAMAGE_REPORTS = "damageReports"
