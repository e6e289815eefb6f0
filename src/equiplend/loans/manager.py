"""Loan request lifecycle.

Every status change is checked against ``ALLOWED_TRANSITIONS`` and written
with a precondition on the current status, so a request that moved in the
meantime is refused rather than overwritten. Pickup and return update the
request and the equipment in one atomic batch.

Notifications and activity logging run after the write through
``run_effects``; their failures are reported, never rolled back.
"""

from datetime import timedelta
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..audit import StaffActionType, StaffActivityLogger
from ..category_limits import CategoryLimitEnforcer
from ..clock import Clock, SystemClock
from ..closed_dates import ClosedDateCalendar
from ..db import Collections, DocumentStore, where
from ..db.models import generate_id
from ..db.schemas import format_timestamp
from ..effects import Effect, fan_out, run_effects
from ..equipment import Equipment, EquipmentRegistry, EquipmentStatus
from ..errors import (
    CategoryLimitExceededError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationError,
)
from ..notifications import NotificationDispatcher, NotificationPriority, NotificationType
from ..settings import SettingsGovernanceService
from ..users import AllowAllPolicy, PermissionPolicy, UserDirectory
from .schemas import (
    DamageReport,
    EquipmentSnapshot,
    LoanRequest,
    LoanRequestCreate,
    LoanRequestStatus,
    LoanStats,
    ReturnCondition,
    TransitionResult,
    UserSnapshot,
    check_transition,
)

logger = structlog.get_logger("equiplend")

MIN_REASON_LENGTH = 10

ACTION_LABELS = {
    StaffActionType.LOAN_APPROVED: "approved a loan request",
    StaffActionType.LOAN_REJECTED: "rejected a loan request",
    StaffActionType.LOAN_PICKED_UP: "handed out equipment",
    StaffActionType.RETURN_PROCESSED: "processed a return",
}


class LoanRequestManager:
    """Drives loan requests from creation to return."""

    def __init__(
        self,
        store: DocumentStore,
        settings: SettingsGovernanceService,
        enforcer: CategoryLimitEnforcer,
        calendar: ClosedDateCalendar,
        dispatcher: NotificationDispatcher,
        activity: StaffActivityLogger,
        directory: UserDirectory,
        equipment: Optional[EquipmentRegistry] = None,
        permissions: Optional[PermissionPolicy] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the manager.

        Args:
            store: Document store
            settings: Source of loan duration and booking window policy
            enforcer: Category limit checks
            calendar: Closed date checks
            dispatcher: Notification delivery
            activity: Staff activity log
            directory: User lookups for snapshots and admin fan-out
            equipment: Equipment lookups (defaults to one over ``store``)
            permissions: Role checks for staff actions (defaults to allow all)
            clock: Time source
        """
        self.store = store
        self.settings = settings
        self.enforcer = enforcer
        self.calendar = calendar
        self.dispatcher = dispatcher
        self.activity = activity
        self.directory = directory
        self.equipment = equipment or EquipmentRegistry(store)
        self.permissions = permissions or AllowAllPolicy()
        self.clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, request_id: str) -> Optional[LoanRequest]:
        doc = self.store.get(Collections.LOAN_REQUESTS, request_id)
        return LoanRequest.from_document(doc) if doc else None

    def require(self, request_id: str) -> LoanRequest:
        request = self.get(request_id)
        if request is None:
            raise NotFoundError("Loan request", request_id)
        return request

    def list_requests(
        self,
        status: Optional[LoanRequestStatus] = None,
        user_id: Optional[str] = None,
        equipment_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[LoanRequest]:
        """Requests matching the filters, newest first."""
        conditions = []
        if status:
            conditions.append(where("status", "==", status.value))
        if user_id:
            conditions.append(where("userId", "==", user_id))
        if equipment_id:
            conditions.append(where("equipmentId", "==", equipment_id))
        docs = self.store.query(
            Collections.LOAN_REQUESTS,
            conditions,
            order_by="createdAt",
            descending=True,
            limit=limit,
        )
        return [LoanRequest.from_document(d) for d in docs]

    def stats(self, user_id: Optional[str] = None) -> LoanStats:
        """Counts per status, optionally for one user."""
        conditions = [where("userId", "==", user_id)] if user_id else []
        stats = LoanStats()
        for doc in self.store.query(Collections.LOAN_REQUESTS, conditions):
            stats.total += 1
            status = doc.get("status")
            if status in LoanStats.model_fields and status != "total":
                setattr(stats, status, getattr(stats, status) + 1)
        return stats

    # -------------------------------------------------------------------------
    # Create / Cancel
    # -------------------------------------------------------------------------

    def create(
        self, data: Union[LoanRequestCreate, dict[str, Any]], requester_id: str
    ) -> TransitionResult:
        """Create a pending loan request.

        Equipment is not touched until pickup.

        Raises:
            ValidationError: Bad payload, bad dates or a duplicate pending request
            NotFoundError: Unknown equipment
            InvalidStateTransitionError: Equipment is not available
            CategoryLimitExceededError: Requester is at the category limit
        """
        payload = self._parse_create(data)

        equipment = self.equipment.require(payload.equipment_id)
        if not equipment.is_available:
            raise InvalidStateTransitionError(
                f"Equipment '{equipment.name}' is not available ({equipment.status.value})",
                current=equipment.status.value,
                target=EquipmentStatus.BORROWED.value,
            )

        duplicate = self.store.query(
            Collections.LOAN_REQUESTS,
            [
                where("userId", "==", requester_id),
                where("equipmentId", "==", payload.equipment_id),
                where("status", "==", LoanRequestStatus.PENDING.value),
            ],
            limit=1,
        )
        if duplicate:
            raise ValidationError(
                "A pending request for this equipment already exists"
            )

        self._validate_dates(payload)

        check = self.enforcer.check(requester_id, equipment.category)
        if not check.allowed:
            raise CategoryLimitExceededError(
                check.message, check.current_count, check.limit or 0
            )

        now = self.clock.now()
        profile = self.directory.get(requester_id)
        request = LoanRequest(
            equipment_id=payload.equipment_id,
            user_id=requester_id,
            requested_at=now,
            borrow_date=payload.borrow_date,
            expected_return_date=payload.expected_return_date,
            purpose=payload.purpose,
            notes=payload.notes or "",
            status=LoanRequestStatus.PENDING,
            equipment_snapshot=self._equipment_snapshot(equipment),
            user_snapshot=UserSnapshot(
                display_name=profile.name if profile else requester_id,
                email=profile.email if profile else None,
                department=profile.department if profile else None,
            ),
            created_at=now,
            updated_at=now,
        )
        doc = self.store.add(Collections.LOAN_REQUESTS, request.to_document())
        request = LoanRequest.from_document(doc)
        logger.info(
            "loan_request_created",
            request_id=request.id,
            equipment_id=request.equipment_id,
            user_id=requester_id,
        )

        failed = run_effects(
            self._admin_effects(
                NotificationType.LOAN_REQUEST_CREATED,
                "New loan request",
                f"{request.borrower_name} requested {request.equipment_name} "
                f"({request.borrow_date.isoformat()} to "
                f"{request.expected_return_date.isoformat()})",
                {"requestId": request.id, "equipmentId": request.equipment_id},
                NotificationPriority.MEDIUM,
            )
        )
        return TransitionResult(request=request, failed_effects=failed)

    def cancel(self, request_id: str, requester_id: str) -> None:
        """Delete a pending request. Only its requester may cancel it.

        Raises:
            PermissionDeniedError: Caller is not the requester
            InvalidStateTransitionError: Request is past pending
        """
        request = self.require(request_id)
        if request.user_id != requester_id:
            raise PermissionDeniedError("Only the requester can cancel this request")
        if request.status != LoanRequestStatus.PENDING:
            raise InvalidStateTransitionError(
                "Only pending requests can be cancelled",
                current=request.status.value,
            )
        try:
            self.store.delete(
                Collections.LOAN_REQUESTS,
                request_id,
                expect={"status": LoanRequestStatus.PENDING.value},
            )
        except PreconditionFailedError as e:
            raise self._stale(e, None) from e
        logger.info("loan_request_cancelled", request_id=request_id, user_id=requester_id)

    def _parse_create(self, data: Union[LoanRequestCreate, dict[str, Any]]) -> LoanRequestCreate:
        if isinstance(data, LoanRequestCreate):
            return data
        try:
            return LoanRequestCreate.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid loan request", e) from e

    def _validate_dates(self, payload: LoanRequestCreate) -> None:
        """Check the borrow window against policy. Collects every problem."""
        settings = self.settings.get_settings()
        today = self.clock.today()
        borrow, due = payload.borrow_date, payload.expected_return_date
        errors = []

        if borrow < today:
            errors.append("Borrow date cannot be in the past")
        if due <= borrow:
            errors.append("Expected return date must be after the borrow date")
        elif (due - borrow).days > settings.max_loan_duration:
            errors.append(
                f"Loan duration cannot exceed {settings.max_loan_duration} days"
            )
        if borrow > today + timedelta(days=settings.max_advance_booking_days):
            errors.append(
                f"Borrow date cannot be more than "
                f"{settings.max_advance_booking_days} days ahead"
            )
        if self.calendar.is_closed(borrow):
            errors.append(f"{borrow.isoformat()} is a closed date")
        if due != borrow and self.calendar.is_closed(due):
            errors.append(f"{due.isoformat()} is a closed date")

        if errors:
            raise ValidationError("; ".join(errors), errors)

    # -------------------------------------------------------------------------
    # Approve / Reject
    # -------------------------------------------------------------------------

    def approve(self, request_id: str, approver_id: str) -> TransitionResult:
        """Approve a pending request. Equipment stays available until pickup."""
        self.permissions.require(approver_id, "approve loan requests")
        request = self.require(request_id)
        check_transition(request.status, LoanRequestStatus.APPROVED)

        equipment = self.equipment.require(request.equipment_id)
        if not equipment.is_available:
            raise InvalidStateTransitionError(
                f"Equipment '{equipment.name}' is no longer available",
                current=equipment.status.value,
            )

        now = self.clock.now()
        request = self._transition(
            request,
            LoanRequestStatus.APPROVED,
            {"approvedBy": approver_id, "approvedAt": format_timestamp(now)},
        )

        failed = run_effects(
            [
                (
                    "notify_requester",
                    lambda: self.dispatcher.notify_user(
                        request.user_id,
                        NotificationType.LOAN_APPROVED,
                        "Loan request approved",
                        f"Your request for {request.equipment_name} was approved. "
                        f"Pick it up on {request.borrow_date.isoformat()}.",
                        {"requestId": request.id},
                    ),
                ),
                *self._staff_effects(
                    approver_id,
                    StaffActionType.LOAN_APPROVED,
                    request,
                    {},
                ),
            ]
        )
        return TransitionResult(request=request, failed_effects=failed)

    def reject(self, request_id: str, reason: str, approver_id: str) -> TransitionResult:
        """Reject a pending request with a reason of at least 10 characters."""
        self.permissions.require(approver_id, "reject loan requests")
        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise ValidationError(
                f"Rejection reason must be at least {MIN_REASON_LENGTH} characters"
            )

        request = self.require(request_id)
        check_transition(request.status, LoanRequestStatus.REJECTED)

        now = self.clock.now()
        request = self._transition(
            request,
            LoanRequestStatus.REJECTED,
            {
                "rejectionReason": reason,
                "rejectedBy": approver_id,
                "rejectedAt": format_timestamp(now),
            },
        )

        failed = run_effects(
            [
                (
                    "notify_requester",
                    lambda: self.dispatcher.notify_user(
                        request.user_id,
                        NotificationType.LOAN_REJECTED,
                        "Loan request rejected",
                        f"Your request for {request.equipment_name} was rejected: {reason}",
                        {"requestId": request.id, "reason": reason},
                    ),
                ),
                *self._staff_effects(
                    approver_id,
                    StaffActionType.LOAN_REJECTED,
                    request,
                    {"rejectionReason": reason},
                ),
            ]
        )
        return TransitionResult(request=request, failed_effects=failed)

    # -------------------------------------------------------------------------
    # Pickup / Return
    # -------------------------------------------------------------------------

    def mark_picked_up(self, request_id: str, staff_id: str) -> TransitionResult:
        """Hand out approved equipment.

        The request and the equipment both become borrowed in one batch, and
        only if the request is still approved and the equipment still
        available when the batch commits.
        """
        self.permissions.require(staff_id, "hand out equipment")
        request = self.require(request_id)
        check_transition(request.status, LoanRequestStatus.BORROWED)

        equipment = self.equipment.require(request.equipment_id)
        if not equipment.is_available:
            raise InvalidStateTransitionError(
                f"Equipment '{equipment.name}' is not available ({equipment.status.value})",
                current=equipment.status.value,
                target=EquipmentStatus.BORROWED.value,
            )

        # Creation only counts items already out, so re-check at handout
        check = self.enforcer.check(request.user_id, request.equipment_snapshot.category)
        if not check.allowed:
            raise CategoryLimitExceededError(
                check.message, check.current_count, check.limit or 0
            )

        now = format_timestamp(self.clock.now())
        batch = self.store.batch()
        batch.update(
            Collections.LOAN_REQUESTS,
            request_id,
            {
                "status": LoanRequestStatus.BORROWED.value,
                "pickedUpBy": staff_id,
                "pickedUpAt": now,
                "updatedAt": now,
            },
            expect={"status": LoanRequestStatus.APPROVED.value},
        )
        batch.update(
            Collections.EQUIPMENT,
            request.equipment_id,
            {
                "status": EquipmentStatus.BORROWED.value,
                "currentBorrowerId": request.user_id,
                "borrowedAt": now,
            },
            expect={"status": EquipmentStatus.AVAILABLE.value},
        )
        try:
            self.store.commit(batch)
        except PreconditionFailedError as e:
            raise self._stale(e, LoanRequestStatus.BORROWED) from e

        request = self.require(request_id)
        logger.info(
            "loan_picked_up",
            request_id=request_id,
            equipment_id=request.equipment_id,
            staff_id=staff_id,
        )

        failed = run_effects(
            [
                (
                    "notify_borrower",
                    lambda: self.dispatcher.notify_user(
                        request.user_id,
                        NotificationType.LOAN_PICKED_UP,
                        "Equipment picked up",
                        f"You have borrowed {request.equipment_name}. Please return it "
                        f"by {request.expected_return_date.isoformat()}.",
                        {"requestId": request.id},
                    ),
                ),
                *self._staff_effects(staff_id, StaffActionType.LOAN_PICKED_UP, request, {}),
            ]
        )
        return TransitionResult(request=request, failed_effects=failed)

    def mark_returned(
        self,
        request_id: str,
        staff_id: str,
        condition: Union[ReturnCondition, str] = ReturnCondition.GOOD,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        """Take equipment back.

        Damaged or incomplete items go to maintenance and get a damage report,
        written in the same batch as the status changes. The equipment record
        is only touched while it still names this borrower; a deleted record
        or one reassigned by an administrator does not block the return, and
        a status other than borrowed is left as it is.

        Raises:
            ValidationError: Unknown condition, or damage without 10+ characters of notes
        """
        self.permissions.require(staff_id, "process returns")
        try:
            condition = ReturnCondition(condition)
        except ValueError as e:
            raise ValidationError(f"Unknown return condition: {condition}") from e
        notes = (notes or "").strip()
        if condition.needs_report and len(notes) < MIN_REASON_LENGTH:
            raise ValidationError(
                f"Describe the problem in at least {MIN_REASON_LENGTH} characters"
            )

        request = self.require(request_id)
        check_transition(request.status, LoanRequestStatus.RETURNED)

        moment = self.clock.now()
        now = format_timestamp(moment)
        equipment_status = (
            EquipmentStatus.MAINTENANCE if condition.needs_report else EquipmentStatus.AVAILABLE
        )

        batch = self.store.batch()
        batch.update(
            Collections.LOAN_REQUESTS,
            request_id,
            {
                "status": LoanRequestStatus.RETURNED.value,
                "actualReturnDate": moment.date().isoformat(),
                "returnedBy": staff_id,
                "returnedAt": now,
                "returnCondition": condition.value,
                "returnNotes": notes or None,
                "updatedAt": now,
            },
            expect={"status": request.status.value},
        )
        equipment = self.equipment.get(request.equipment_id)
        if equipment is not None and equipment.current_borrower_id == request.user_id:
            equipment_changes: dict[str, Any] = {
                "currentBorrowerId": None,
                "returnedAt": now,
                "lastReturnCondition": condition.value,
                "lastReturnNotes": notes or None,
            }
            # Keep a status an administrator set while the item was out
            if equipment.status == EquipmentStatus.BORROWED:
                equipment_changes["status"] = equipment_status.value
            batch.update(
                Collections.EQUIPMENT,
                request.equipment_id,
                equipment_changes,
                expect={"currentBorrowerId": request.user_id},
            )
        else:
            logger.warning(
                "return_equipment_not_updated",
                request_id=request_id,
                equipment_id=request.equipment_id,
                reason="missing" if equipment is None else "not held by borrower",
            )

        report = None
        if condition.needs_report:
            report = DamageReport(
                id=generate_id(),
                loan_request_id=request_id,
                equipment_id=request.equipment_id,
                equipment_name=request.equipment_name,
                borrower_id=request.user_id,
                borrower_name=request.borrower_name,
                condition=condition,
                description=notes,
                reported_by=staff_id,
                priority="high" if condition == ReturnCondition.DAMAGED else "medium",
                created_at=moment,
            )
            batch.put(Collections.DAMAGE_REPORTS, report.id, report.to_document())

        try:
            self.store.commit(batch)
        except PreconditionFailedError as e:
            raise self._stale(e, LoanRequestStatus.RETURNED) from e

        request = self.require(request_id)
        logger.info(
            "loan_returned",
            request_id=request_id,
            equipment_id=request.equipment_id,
            condition=condition.value,
            staff_id=staff_id,
        )

        effects: list[Effect] = [
            (
                "notify_borrower",
                lambda: self.dispatcher.notify_user(
                    request.user_id,
                    NotificationType.LOAN_RETURNED,
                    "Equipment returned",
                    f"Your return of {request.equipment_name} was recorded "
                    f"(condition: {condition.value}).",
                    {"requestId": request.id, "condition": condition.value},
                ),
            ),
            *self._staff_effects(
                staff_id,
                StaffActionType.RETURN_PROCESSED,
                request,
                {"condition": condition.value, "notes": notes},
                priority=(
                    NotificationPriority.HIGH
                    if condition == ReturnCondition.DAMAGED
                    else NotificationPriority.MEDIUM
                ),
            ),
        ]
        if report is not None:
            effects.extend(
                self._admin_effects(
                    NotificationType.DAMAGE_REPORTED,
                    "Damage reported",
                    f"{request.equipment_name} was returned "
                    f"{condition.value.replace('_', ' ')} by {request.borrower_name}: {notes}",
                    {"damageReportId": report.id, "requestId": request.id},
                    NotificationPriority.HIGH,
                    prefix="escalate_damage",
                )
            )
        failed = run_effects(effects)
        return TransitionResult(request=request, damage_report=report, failed_effects=failed)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _transition(
        self,
        request: LoanRequest,
        target: LoanRequestStatus,
        changes: dict[str, Any],
    ) -> LoanRequest:
        """Write a single-document status change guarded by the current status."""
        check_transition(request.status, target)
        try:
            doc = self.store.update(
                Collections.LOAN_REQUESTS,
                request.id,
                {
                    **changes,
                    "status": target.value,
                    "updatedAt": format_timestamp(self.clock.now()),
                },
                expect={"status": request.status.value},
            )
        except PreconditionFailedError as e:
            raise self._stale(e, target) from e
        logger.info(
            "loan_status_changed",
            request_id=request.id,
            old_status=request.status.value,
            new_status=target.value,
        )
        return LoanRequest.from_document(doc)

    @staticmethod
    def _stale(
        error: PreconditionFailedError, target: Optional[LoanRequestStatus]
    ) -> InvalidStateTransitionError:
        """Turn a failed write precondition into a state error."""
        what = "Equipment" if error.collection == Collections.EQUIPMENT else "Loan request"
        return InvalidStateTransitionError(
            f"{what} changed concurrently: expected {error.field} "
            f"'{error.expected}', found '{error.actual}'",
            current=str(error.actual) if error.actual is not None else None,
            target=target.value if target else None,
        )

    @staticmethod
    def _equipment_snapshot(equipment: Equipment) -> EquipmentSnapshot:
        return EquipmentSnapshot(
            name=equipment.name,
            category=equipment.category,
            category_name=equipment.category_name,
            department=equipment.department,
            serial_number=equipment.serial_number,
        )

    def _admin_effects(
        self,
        type: NotificationType,
        title: str,
        message: str,
        data: dict[str, Any],
        priority: NotificationPriority,
        prefix: str = "notify_admin",
    ) -> list[Effect]:
        """One effect per active administrator."""
        return fan_out(
            prefix,
            self.directory.list_admin_ids,
            lambda admin_id: self.dispatcher.notify_user(
                admin_id, type, title, message, data, priority
            ),
        )

    def _staff_name(self, staff_id: str) -> str:
        """Display name for activity entries. Falls back to the ID if the lookup fails."""
        try:
            return self.directory.display_name(staff_id)
        except Exception as e:
            logger.warning("staff_name_lookup_failed", staff_id=staff_id, error=str(e))
            return staff_id

    def _staff_effects(
        self,
        staff_id: str,
        action: StaffActionType,
        request: LoanRequest,
        details: dict[str, Any],
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> list[Effect]:
        """Activity log entry plus a summary to every administrator."""
        staff_name = self._staff_name(staff_id)
        full_details = {
            "requestId": request.id,
            "equipmentId": request.equipment_id,
            "equipmentName": request.equipment_name,
            "borrowerId": request.user_id,
            "borrowerName": request.borrower_name,
            **details,
        }
        return [
            (
                "activity_log",
                lambda: self.activity.log(staff_id, staff_name, action, full_details),
            ),
            *self._admin_effects(
                NotificationType.STAFF_ACTION,
                f"Staff action: {action.value.replace('_', ' ')}",
                f"{staff_name} {ACTION_LABELS[action]}: {request.equipment_name} "
                f"for {request.borrower_name}",
                {"staffId": staff_id, "actionType": action.value, **full_details},
                priority,
            ),
        ]
