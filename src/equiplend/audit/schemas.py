"""Pydantic schemas for the settings audit log and staff activity log."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, TypeAdapter

from ..db.schemas import StoreModel, Timestamp

_ANY = TypeAdapter(Any)


def json_safe(value: Any) -> Any:
    """Convert dates, enums and models inside ``value`` to JSON types."""
    return _ANY.dump_python(value, mode="json")


class AuditAction(str, Enum):
    """Kind of settings mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    IMPORT = "import"
    BACKUP = "backup"


class AuditLogEntry(StoreModel):
    """One immutable record of a policy change."""

    timestamp: Timestamp
    admin_id: str
    admin_name: str
    action: AuditAction
    setting_type: str
    setting_path: str
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogFilter(BaseModel):
    """Filters for reading the audit log."""

    admin_id: Optional[str] = None
    setting_type: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)


class StaffActionType(str, Enum):
    """Loan actions performed by staff."""

    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_PICKED_UP = "loan_picked_up"
    RETURN_PROCESSED = "return_processed"


class StaffActivityLog(StoreModel):
    """One staff action on a loan request."""

    staff_id: str
    staff_name: str
    action_type: StaffActionType
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: Timestamp
