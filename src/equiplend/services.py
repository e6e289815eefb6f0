"""Wiring of the service graph.

Dependencies only point one way: store and clock at the bottom, then users,
audit and notifications, then settings, then the loan services on top.
"""

from dataclasses import dataclass
from typing import Optional

from .audit import AuditLogger, StaffActivityLogger
from .category_limits import CategoryLimitEnforcer
from .clock import Clock, SystemClock
from .closed_dates import ClosedDateCalendar
from .config import Config, get_config
from .db import DocumentStore, get_db
from .equipment import EquipmentRegistry
from .loans import LoanRequestManager, OverdueReconciler
from .notifications import (
    DiscordWebhookClient,
    NotificationDispatcher,
    StoreNotificationDispatcher,
    SystemNotificationService,
)
from .settings import SettingsGovernanceService
from .users import RolePermissionPolicy, UserDirectory


@dataclass
class Services:
    """Every service, built over one store and one clock."""

    store: DocumentStore
    clock: Clock
    directory: UserDirectory
    equipment: EquipmentRegistry
    audit: AuditLogger
    activity: StaffActivityLogger
    dispatcher: NotificationDispatcher
    settings: SettingsGovernanceService
    calendar: ClosedDateCalendar
    enforcer: CategoryLimitEnforcer
    loans: LoanRequestManager
    overdue: OverdueReconciler
    announcements: SystemNotificationService


def build_services(
    config: Optional[Config] = None,
    store: Optional[DocumentStore] = None,
    clock: Optional[Clock] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Services:
    """Build the service graph.

    Args:
        config: Settings for timeouts and naming (uses global if not provided)
        store: Document store (uses the global database if not provided)
        clock: Time source (system clock if not provided)
        dispatcher: Notification delivery (store + Discord if not provided)
    """
    config = config or get_config()
    store = store if store is not None else get_db()
    clock = clock or SystemClock()
    dispatcher = dispatcher or StoreNotificationDispatcher(
        store, clock, DiscordWebhookClient(timeout=config.webhook_timeout)
    )

    directory = UserDirectory(store)
    equipment = EquipmentRegistry(store)
    audit = AuditLogger(store, clock)
    activity = StaffActivityLogger(store, clock)
    settings = SettingsGovernanceService(
        store, audit, dispatcher, directory, clock, org_name=config.org_name
    )
    calendar = ClosedDateCalendar(settings)
    enforcer = CategoryLimitEnforcer(store, settings)
    loans = LoanRequestManager(
        store,
        settings,
        enforcer,
        calendar,
        dispatcher,
        activity,
        directory,
        equipment=equipment,
        permissions=RolePermissionPolicy(directory),
        clock=clock,
    )
    overdue = OverdueReconciler(
        store, dispatcher, directory, settings, clock, org_name=config.org_name
    )
    announcements = SystemNotificationService(store, dispatcher, directory, clock)

    return Services(
        store=store,
        clock=clock,
        directory=directory,
        equipment=equipment,
        audit=audit,
        activity=activity,
        dispatcher=dispatcher,
        settings=settings,
        calendar=calendar,
        enforcer=enforcer,
        loans=loans,
        overdue=overdue,
        announcements=announcements,
    )
