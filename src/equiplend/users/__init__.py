"""User profiles and permissions."""

from .directory import AllowAllPolicy, PermissionPolicy, RolePermissionPolicy, UserDirectory
from .schemas import UserProfile, UserRole, UserStatus

__all__ = [
    "AllowAllPolicy",
    "PermissionPolicy",
    "RolePermissionPolicy",
    "UserDirectory",
    "UserProfile",
    "UserRole",
    "UserStatus",
]
