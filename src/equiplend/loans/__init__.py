"""Loan request lifecycle and overdue tracking."""

from .manager import LoanRequestManager
from .overdue import (
    OverdueReconciler,
    OverdueStatistics,
    SweepResult,
    days_overdue,
    days_until_due,
    is_overdue,
)
from .schemas import (
    ALLOWED_TRANSITIONS,
    DamageReport,
    LoanRequest,
    LoanRequestCreate,
    LoanRequestStatus,
    LoanStats,
    ReturnCondition,
    TransitionResult,
    can_transition,
)

__all__ = [
    "LoanRequestManager",
    "OverdueReconciler",
    "OverdueStatistics",
    "SweepResult",
    "days_overdue",
    "days_until_due",
    "is_overdue",
    "ALLOWED_TRANSITIONS",
    "DamageReport",
    "LoanRequest",
    "LoanRequestCreate",
    "LoanRequestStatus",
    "LoanStats",
    "ReturnCondition",
    "TransitionResult",
    "can_transition",
]
