"""Equipment lending: loan lifecycle, overdue tracking and settings governance."""

__version__ = "0.1.0"
