"""User lookups and role permissions."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from ..db import Collections, DocumentStore, where
from ..errors import PermissionDeniedError
from .schemas import UserProfile, UserRole, UserStatus


class UserDirectory:
    """Reads user profiles from the store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, user_id: str) -> Optional[UserProfile]:
        doc = self.store.get(Collections.USERS, user_id)
        return UserProfile.from_document(doc) if doc else None

    def save(self, profile: UserProfile) -> UserProfile:
        """Create or replace a profile. Profiles are normally owned elsewhere."""
        if not profile.id:
            doc = self.store.add(Collections.USERS, profile.to_document())
            return UserProfile.from_document(doc)
        self.store.put(Collections.USERS, profile.id, profile.to_document())
        return profile

    def list_admins(self) -> list[UserProfile]:
        """Administrators whose accounts are approved."""
        docs = self.store.query(
            Collections.USERS,
            [
                where("role", "==", UserRole.ADMIN.value),
                where("status", "==", UserStatus.APPROVED.value),
            ],
        )
        return [UserProfile.from_document(d) for d in docs]

    def list_admin_ids(self) -> list[str]:
        return [u.id for u in self.list_admins() if u.id]

    def list_active_user_ids(self) -> list[str]:
        """IDs of every approved user, used as broadcast recipients."""
        docs = self.store.query(
            Collections.USERS, [where("status", "==", UserStatus.APPROVED.value)]
        )
        return [d["id"] for d in docs]

    def display_name(self, user_id: str) -> str:
        profile = self.get(user_id)
        return profile.name if profile else user_id


class PermissionPolicy(ABC):
    """Decides whether an actor may perform an action."""

    @abstractmethod
    def require(self, actor_id: str, action: str) -> None:
        """Raise PermissionDeniedError if ``actor_id`` may not do ``action``."""


class AllowAllPolicy(PermissionPolicy):
    """Permits everything. The default when no directory is wired in."""

    def require(self, actor_id: str, action: str) -> None:
        return None


class RolePermissionPolicy(PermissionPolicy):
    """Grants actions to users holding one of the allowed roles."""

    DEFAULT_ROLES = (UserRole.ADMIN, UserRole.STAFF)

    def __init__(
        self,
        directory: UserDirectory,
        roles: Optional[Iterable[UserRole]] = None,
    ):
        self.directory = directory
        self.roles = set(roles or self.DEFAULT_ROLES)

    def require(self, actor_id: str, action: str) -> None:
        profile = self.directory.get(actor_id)
        if profile is None:
            raise PermissionDeniedError(f"Unknown user {actor_id} cannot {action}")
        if profile.status != UserStatus.APPROVED:
            raise PermissionDeniedError(f"User {actor_id} is not active")
        if profile.role not in self.roles:
            raise PermissionDeniedError(
                f"Role '{profile.role.value}' is not allowed to {action}"
            )
