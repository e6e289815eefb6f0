"""Overdue detection for borrowed equipment.

The sweep is safe to run from several places at once: each request is moved
to overdue only if it is still borrowed when the write lands.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Optional

import structlog
from tqdm import tqdm

from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore, where
from ..db.schemas import format_timestamp
from ..effects import Effect, fan_out, run_effects
from ..errors import PreconditionFailedError
from ..notifications import NotificationDispatcher, NotificationPriority, NotificationType
from ..notifications.discord import overdue_message
from ..settings import SettingsGovernanceService
from ..users import UserDirectory
from .schemas import LoanRequest, LoanRequestStatus

logger = structlog.get_logger("equiplend")

OUT_STATUSES = (LoanRequestStatus.BORROWED.value, LoanRequestStatus.OVERDUE.value)
DAY_SECONDS = 24 * 60 * 60


@dataclass
class SweepResult:
    """Result of one overdue sweep."""

    marked: int = 0
    skipped: int = 0
    notifications_sent: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class OverdueStatistics:
    """Snapshot of items currently out."""

    borrowed: int = 0
    overdue: int = 0
    due_today: int = 0
    due_this_week: int = 0


def due_at(request: LoanRequest, now: datetime) -> datetime:
    """Start of the expected return day, in the timezone of ``now``."""
    return datetime.combine(request.expected_return_date, time.min, tzinfo=now.tzinfo)


def _days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / DAY_SECONDS)


def is_overdue(request: LoanRequest, now: datetime) -> bool:
    """Live view: out, and the expected return day has begun."""
    return request.status.value in OUT_STATUSES and now > due_at(request, now)


def days_overdue(request: LoanRequest, now: datetime) -> int:
    """Started days since the expected return day began, 0 if not overdue."""
    if not is_overdue(request, now):
        return 0
    return _days(now - due_at(request, now))


def days_until_due(request: LoanRequest, now: datetime) -> int:
    """Negative once the due date has passed."""
    return _days(due_at(request, now) - now)


class OverdueReconciler:
    """Marks late loans overdue and tells the people involved."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        directory: UserDirectory,
        settings: SettingsGovernanceService,
        clock: Optional[Clock] = None,
        org_name: str = "Equipment Lending System",
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.directory = directory
        self.settings = settings
        self.clock = clock or SystemClock()
        self.org_name = org_name

    def find_late(self) -> list[LoanRequest]:
        """Borrowed requests whose expected return day has begun."""
        now = self.clock.now()
        docs = self.store.query(
            Collections.LOAN_REQUESTS,
            [
                where("status", "==", LoanRequestStatus.BORROWED.value),
                where("expectedReturnDate", "<=", now.date().isoformat()),
            ],
            order_by="expectedReturnDate",
        )
        requests = [LoanRequest.from_document(d) for d in docs]
        return [r for r in requests if is_overdue(r, now)]

    def sweep(self, show_progress: bool = False) -> SweepResult:
        """Move every late borrowed request to overdue.

        Args:
            show_progress: Show tqdm progress bar

        Returns:
            SweepResult with counts and per-request errors
        """
        result = SweepResult()
        late = self.find_late()
        iterator = tqdm(late, desc="Marking overdue loans", disable=not show_progress)

        for request in iterator:
            moment = self.clock.now()
            now = format_timestamp(moment)
            try:
                self.store.update(
                    Collections.LOAN_REQUESTS,
                    request.id,
                    {
                        "status": LoanRequestStatus.OVERDUE.value,
                        "overdueMarkedAt": now,
                        "updatedAt": now,
                    },
                    expect={"status": LoanRequestStatus.BORROWED.value},
                )
            except PreconditionFailedError:
                # Returned or marked by someone else since the scan
                result.skipped += 1
                continue
            except Exception as e:
                logger.warning("overdue_mark_failed", request_id=request.id, error=str(e))
                result.errors.append((request.id, str(e)))
                continue

            result.marked += 1
            effects = self._effects(request, days_overdue(request, moment))
            failed = run_effects(effects)
            result.notifications_sent += sum(
                1 for name, _ in effects if name != "webhook" and name not in failed
            )

        logger.info(
            "overdue_sweep_finished",
            scanned=len(late),
            marked=result.marked,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    def due_soon(self, days: int = 2) -> list[LoanRequest]:
        """Borrowed requests due within ``days`` days and not yet late, soonest first."""
        today = self.clock.today()
        docs = self.store.query(
            Collections.LOAN_REQUESTS,
            [
                where("status", "==", LoanRequestStatus.BORROWED.value),
                where("expectedReturnDate", ">", today.isoformat()),
                where("expectedReturnDate", "<=", (today + timedelta(days=days)).isoformat()),
            ],
            order_by="expectedReturnDate",
        )
        return [LoanRequest.from_document(d) for d in docs]

    def statistics(self) -> OverdueStatistics:
        """Count items out. Due today means due back before tomorrow starts."""
        now = self.clock.now()
        stats = OverdueStatistics()
        docs = self.store.query(
            Collections.LOAN_REQUESTS, [where("status", "in", list(OUT_STATUSES))]
        )
        for doc in docs:
            request = LoanRequest.from_document(doc)
            if request.status == LoanRequestStatus.BORROWED:
                stats.borrowed += 1
            if is_overdue(request, now):
                stats.overdue += 1
                continue
            until = days_until_due(request, now)
            if until <= 1:
                stats.due_today += 1
            elif until <= 7:
                stats.due_this_week += 1
        return stats

    def _effects(self, request: LoanRequest, days: int) -> list[Effect]:
        message = (
            f"{request.equipment_name} was due back on "
            f"{request.expected_return_date.isoformat()} ({days} day(s) overdue)."
        )
        data = {
            "requestId": request.id,
            "equipmentId": request.equipment_id,
            "daysOverdue": days,
        }
        effects: list[Effect] = [
            (
                "notify_borrower",
                lambda: self.dispatcher.notify_user(
                    request.user_id,
                    NotificationType.LOAN_OVERDUE,
                    "Equipment overdue",
                    f"Please return {message}",
                    data,
                    NotificationPriority.HIGH,
                ),
            ),
            (
                "webhook",
                lambda: self.dispatcher.send_webhook(
                    overdue_message(
                        request.borrower_name,
                        request.equipment_name,
                        days,
                        request.expected_return_date.isoformat(),
                        self.clock.now(),
                        self.org_name,
                    ),
                    url=self.settings.get_settings().webhook_url,
                ),
            ),
            *fan_out(
                "notify_admin",
                self.directory.list_admin_ids,
                lambda admin_id: self.dispatcher.notify_user(
                    admin_id,
                    NotificationType.LOAN_OVERDUE,
                    "Overdue loan",
                    f"{request.borrower_name}: {message}",
                    {**data, "borrowerId": request.user_id},
                    NotificationPriority.HIGH,
                ),
            ),
        ]
        return effects
