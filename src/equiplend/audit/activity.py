"""Log of staff actions on loan requests."""

from typing import Any, Optional

from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore, where
from .schemas import StaffActionType, StaffActivityLog, json_safe


class StaffActivityLogger:
    """Records who approved, rejected, handed out or took back what."""

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def log(
        self,
        staff_id: str,
        staff_name: str,
        action_type: StaffActionType,
        details: Optional[dict[str, Any]] = None,
    ) -> StaffActivityLog:
        entry = StaffActivityLog(
            staff_id=staff_id,
            staff_name=staff_name,
            action_type=action_type,
            details=json_safe(details or {}),
            timestamp=self.clock.now(),
        )
        doc = self.store.add(Collections.STAFF_ACTIVITY_LOGS, entry.to_document())
        return StaffActivityLog.from_document(doc)

    def recent(
        self,
        staff_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[StaffActivityLog]:
        """Latest entries, optionally for one staff member."""
        conditions = [where("staffId", "==", staff_id)] if staff_id else []
        docs = self.store.query(
            Collections.STAFF_ACTIVITY_LOGS,
            conditions,
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
        return [StaffActivityLog.from_document(d) for d in docs]
