"""Closed-date lookups."""

from datetime import date, datetime, timedelta
from typing import Any, Optional

from ..settings import ClosedDate, SettingsGovernanceService


def to_day(value: Any) -> date:
    """Normalize a date, datetime or ISO string to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    raise TypeError(f"Cannot interpret {value!r} as a date")


class ClosedDateCalendar:
    """Answers "is this day closed?".

    Persistence, validation and auditing of closed dates belong to the
    settings service; this class reads through it.
    """

    def __init__(self, settings: SettingsGovernanceService):
        self.settings = settings

    def is_closed(self, value: Any) -> bool:
        """True if ``value``'s calendar day matches a closed date.

        Yearly entries match any year sharing month and day.
        """
        day = to_day(value)
        return any(cd.matches(day) for cd in self.settings.get_closed_dates())

    def closing_entry(self, value: Any) -> Optional[ClosedDate]:
        """The entry that closes ``value``, if any."""
        day = to_day(value)
        for cd in self.settings.get_closed_dates():
            if cd.matches(day):
                return cd
        return None

    def closed_dates_between(self, start: Any, end: Any) -> list[date]:
        """Closed days in the inclusive range ``start``..``end``."""
        first, last = to_day(start), to_day(end)
        if last < first:
            return []
        entries = self.settings.get_closed_dates()
        days = []
        current = first
        while current <= last:
            if any(cd.matches(current) for cd in entries):
                days.append(current)
            current += timedelta(days=1)
        return days

    def add_closed_date(
        self,
        value: Any,
        reason: str,
        admin_id: str,
        admin_name: str = "Admin",
        is_recurring: bool = False,
        recurring_pattern: Optional[str] = None,
    ) -> ClosedDate:
        return self.settings.add_closed_date(
            value, reason, admin_id, admin_name, is_recurring, recurring_pattern
        )

    def remove_closed_date(
        self, closed_date_id: str, admin_id: str, admin_name: str = "Admin"
    ) -> None:
        self.settings.remove_closed_date(closed_date_id, admin_id, admin_name)

    def list_closed_dates(self) -> list[ClosedDate]:
        """All entries, ascending by date."""
        return self.settings.get_closed_dates()
