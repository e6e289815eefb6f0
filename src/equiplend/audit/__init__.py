"""Settings audit log and staff activity log."""

from .activity import StaffActivityLogger
from .logger import AuditLogger
from .schemas import (
    AuditAction,
    AuditLogEntry,
    AuditLogFilter,
    StaffActionType,
    StaffActivityLog,
)

__all__ = [
    "StaffActivityLogger",
    "AuditLogger",
    "AuditAction",
    "AuditLogEntry",
    "AuditLogFilter",
    "StaffActionType",
    "StaffActivityLog",
]
