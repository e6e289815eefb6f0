"""Append-only audit log of settings changes."""

from typing import Any, Optional

import structlog

from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore, where
from ..db.schemas import format_timestamp
from .schemas import AuditAction, AuditLogEntry, AuditLogFilter, json_safe

logger = structlog.get_logger("equiplend")


class AuditLogger:
    """Writes and reads settings audit entries.

    Entries are only ever appended; there is no update or delete.
    """

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def log(
        self,
        admin_id: str,
        admin_name: str,
        action: AuditAction,
        setting_type: str,
        setting_path: str,
        old_value: Any = None,
        new_value: Any = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLogEntry:
        """Append an entry.

        Args:
            admin_id: Acting administrator
            admin_name: Display name at the time of the change
            action: Kind of change
            setting_type: e.g. ``systemSettings``, ``closedDate``, ``categoryLimit``
            setting_path: Document path of the changed value
            old_value: Value before the change (None for creates)
            new_value: Value after the change (None for deletes)

        Returns:
            The stored entry
        """
        entry = AuditLogEntry(
            timestamp=self.clock.now(),
            admin_id=admin_id,
            admin_name=admin_name,
            action=action,
            setting_type=setting_type,
            setting_path=setting_path,
            old_value=json_safe(old_value),
            new_value=json_safe(new_value),
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        doc = self.store.add(Collections.SETTINGS_AUDIT_LOG, entry.to_document())
        logger.info(
            "audit_logged",
            action=action.value,
            setting_type=setting_type,
            setting_path=setting_path,
            admin_id=admin_id,
        )
        return AuditLogEntry.from_document(doc)

    def entries(self, filters: Optional[AuditLogFilter] = None) -> list[AuditLogEntry]:
        """Read entries, newest first."""
        filters = filters or AuditLogFilter()
        conditions = []
        if filters.admin_id:
            conditions.append(where("adminId", "==", filters.admin_id))
        if filters.setting_type:
            conditions.append(where("settingType", "==", filters.setting_type))
        if filters.start:
            conditions.append(where("timestamp", ">=", format_timestamp(filters.start)))
        if filters.end:
            conditions.append(where("timestamp", "<=", format_timestamp(filters.end)))

        docs = self.store.query(
            Collections.SETTINGS_AUDIT_LOG,
            conditions,
            order_by="timestamp",
            descending=True,
            limit=filters.limit,
        )
        return [AuditLogEntry.from_document(d) for d in docs]
