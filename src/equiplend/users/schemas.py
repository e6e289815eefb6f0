"""Pydantic schemas for user profiles."""

from enum import Enum
from typing import Optional

from ..db.schemas import StoreModel


class UserRole(str, Enum):
    """Role of a user."""

    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"


class UserStatus(str, Enum):
    """Account status of a user."""

    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


class UserProfile(StoreModel):
    """A member of the organization."""

    display_name: str = ""
    email: Optional[str] = None
    department: Optional[str] = None
    role: UserRole = UserRole.USER
    status: UserStatus = UserStatus.APPROVED

    @property
    def name(self) -> str:
        return self.display_name or self.email or self.id or "Unknown"
