"""Pydantic schemas for loan requests."""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from ..db.schemas import CamelModel, InputModel, StoreModel, Timestamp, datetime_to_day
from ..errors import InvalidStateTransitionError


class LoanRequestStatus(str, Enum):
    """Status of a loan request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


# Every legal status change. Anything else is refused.
ALLOWED_TRANSITIONS: dict[LoanRequestStatus, frozenset[LoanRequestStatus]] = {
    LoanRequestStatus.PENDING: frozenset(
        {LoanRequestStatus.APPROVED, LoanRequestStatus.REJECTED}
    ),
    LoanRequestStatus.APPROVED: frozenset({LoanRequestStatus.BORROWED}),
    LoanRequestStatus.BORROWED: frozenset(
        {LoanRequestStatus.RETURNED, LoanRequestStatus.OVERDUE}
    ),
    LoanRequestStatus.OVERDUE: frozenset({LoanRequestStatus.RETURNED}),
    LoanRequestStatus.REJECTED: frozenset(),
    LoanRequestStatus.RETURNED: frozenset(),
}


def can_transition(current: LoanRequestStatus, target: LoanRequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def check_transition(current: LoanRequestStatus, target: LoanRequestStatus) -> None:
    """Raise InvalidStateTransitionError unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidStateTransitionError(
            f"Cannot move a loan request from '{current.value}' to '{target.value}'",
            current=current.value,
            target=target.value,
        )


class ReturnCondition(str, Enum):
    """Condition of returned equipment."""

    GOOD = "good"
    DAMAGED = "damaged"
    MISSING_PARTS = "missing_parts"

    @property
    def needs_report(self) -> bool:
        return self in (ReturnCondition.DAMAGED, ReturnCondition.MISSING_PARTS)


class EquipmentSnapshot(CamelModel):
    """Equipment details copied onto the request at creation."""

    name: str
    category: str
    category_name: Optional[str] = None
    department: Optional[str] = None
    serial_number: Optional[str] = None


class UserSnapshot(CamelModel):
    """Requester details copied onto the request at creation."""

    display_name: str
    email: Optional[str] = None
    department: Optional[str] = None


class LoanRequestCreate(InputModel):
    """Schema for creating a loan request."""

    equipment_id: str = Field(..., min_length=1)
    borrow_date: date
    expected_return_date: date
    purpose: str = Field(..., max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("borrow_date", "expected_return_date", mode="before")
    @classmethod
    def normalize_date(cls, v: Any) -> Any:
        return datetime_to_day(v)

    @field_validator("purpose")
    @classmethod
    def purpose_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Purpose is required")
        return v

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class LoanRequest(StoreModel):
    """A request to borrow one item."""

    equipment_id: str
    user_id: str
    requested_at: Timestamp
    borrow_date: date
    expected_return_date: date
    actual_return_date: Optional[date] = None
    purpose: str
    notes: str = ""
    status: LoanRequestStatus = LoanRequestStatus.PENDING
    approved_by: Optional[str] = None
    approved_at: Optional[Timestamp] = None
    rejection_reason: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[Timestamp] = None
    picked_up_by: Optional[str] = None
    picked_up_at: Optional[Timestamp] = None
    returned_by: Optional[str] = None
    returned_at: Optional[Timestamp] = None
    return_condition: Optional[ReturnCondition] = None
    return_notes: Optional[str] = None
    overdue_marked_at: Optional[Timestamp] = None
    equipment_snapshot: EquipmentSnapshot
    user_snapshot: UserSnapshot
    created_at: Timestamp
    updated_at: Timestamp

    @property
    def borrower_name(self) -> str:
        return self.user_snapshot.display_name or self.user_id

    @property
    def equipment_name(self) -> str:
        return self.equipment_snapshot.name


class DamageReport(StoreModel):
    """Raised when equipment comes back damaged or incomplete."""

    loan_request_id: str
    equipment_id: str
    equipment_name: str
    borrower_id: str
    borrower_name: str
    condition: ReturnCondition
    description: str
    reported_by: str
    status: str = "pending"
    priority: str
    created_at: Timestamp


class TransitionResult(BaseModel):
    """A committed transition plus any side effects that failed."""

    request: Optional[LoanRequest] = None
    damage_report: Optional[DamageReport] = None
    failed_effects: list[str] = Field(default_factory=list)


class LoanStats(BaseModel):
    """Counts of loan requests per status."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    borrowed: int = 0
    returned: int = 0
    overdue: int = 0
