"""Closed (blackout) dates."""

from .calendar import ClosedDateCalendar, to_day

__all__ = ["ClosedDateCalendar", "to_day"]
