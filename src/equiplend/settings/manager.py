"""Settings governance: validated policy changes with audit and alerts."""

from typing import Any, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..audit import AuditAction, AuditLogEntry, AuditLogFilter, AuditLogger
from ..clock import Clock, SystemClock
from ..db import Collections, DocumentStore
from ..db.schemas import format_timestamp
from ..effects import fan_out, run_effects
from ..errors import EquipLendError, NotFoundError, ValidationError
from ..notifications import NotificationDispatcher, NotificationPriority, NotificationType
from ..notifications.discord import (
    critical_setting_message,
    format_value,
    webhook_test_message,
)
from ..users import UserDirectory
from .schemas import (
    CRITICAL_SETTINGS,
    SETTING_LABELS,
    SETTINGS_DOC_ID,
    CategoryLimit,
    CategoryLimitSet,
    ClosedDate,
    ClosedDateCreate,
    ExportMetadata,
    ImportResult,
    ImportStats,
    SettingKey,
    SettingsBackup,
    SettingsExport,
    SettingType,
    SystemSettings,
)
from .validation import (
    validate_closed_date,
    validate_import_data,
    validate_return_window,
    validate_setting,
)

logger = structlog.get_logger("equiplend")

EXPORTED_SETTINGS = (
    SettingKey.MAX_LOAN_DURATION.value,
    SettingKey.MAX_ADVANCE_BOOKING_DAYS.value,
    SettingKey.DEFAULT_CATEGORY_LIMIT.value,
    SettingKey.LOAN_RETURN_START_TIME.value,
    SettingKey.LOAN_RETURN_END_TIME.value,
    SettingKey.DISCORD_ENABLED.value,
)


class SettingsGovernanceService:
    """Validated CRUD over global policy, closed dates and category limits.

    Every mutation appends to the audit log. Changes to critical settings
    also alert every administrator and the configured webhook.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit: AuditLogger,
        dispatcher: NotificationDispatcher,
        directory: UserDirectory,
        clock: Optional[Clock] = None,
        org_name: str = "Equipment Lending System",
    ):
        """Initialize the service.

        Args:
            store: Document store
            audit: Settings audit log
            dispatcher: Delivers admin notifications and webhook alerts
            directory: Used to find the administrators to alert
            clock: Time source
            org_name: Shown in webhook footers
        """
        self.store = store
        self.audit = audit
        self.dispatcher = dispatcher
        self.directory = directory
        self.clock = clock or SystemClock()
        self.org_name = org_name

    # -------------------------------------------------------------------------
    # System Settings
    # -------------------------------------------------------------------------

    def get_settings(self) -> SystemSettings:
        """Get the settings singleton, creating it with defaults if missing."""
        doc = self.store.get(Collections.SETTINGS, SETTINGS_DOC_ID)
        if doc:
            return SystemSettings.from_document(doc)

        settings = SystemSettings(last_updated=self.clock.now(), last_updated_by="system")
        self.store.put(Collections.SETTINGS, SETTINGS_DOC_ID, settings.to_document())
        logger.info("settings_initialized")
        settings.id = SETTINGS_DOC_ID
        return settings

    def update_setting(
        self,
        key: str,
        value: Any,
        admin_id: str,
        admin_name: str,
        reason: Optional[str] = None,
    ) -> SystemSettings:
        """Update one setting.

        Raises:
            ValidationError: If the key is unknown or the value is out of range
        """
        value = self._normalize(key, value)
        error = validate_setting(key, value)
        if error:
            raise ValidationError(error)

        current = self.get_settings()
        self._check_window(current, {key: value})
        old_value = current.value_of(key)

        self._write_settings({key: value}, admin_id)
        self._record_change(
            AuditAction.UPDATE,
            key,
            f"{SETTINGS_DOC_ID}.{key}",
            old_value,
            value,
            admin_id,
            admin_name,
            reason=reason,
        )
        return self.get_settings()

    def update_multiple_settings(
        self,
        values: dict[str, Any],
        admin_id: str,
        admin_name: str,
    ) -> list[str]:
        """Update several settings; all are validated before any is written.

        Only keys whose value actually changes are audited.

        Returns:
            The keys whose value changed
        """
        values = {key: self._normalize(key, value) for key, value in values.items()}
        errors = []
        for key, value in values.items():
            error = validate_setting(key, value)
            if error:
                errors.append(f"{key}: {error}")
        if errors:
            raise ValidationError(f"Validation failed: {', '.join(errors)}", errors)

        current = self.get_settings()
        self._check_window(current, values)
        if not values:
            return []

        self._write_settings(values, admin_id)
        changed = []
        for key, new_value in values.items():
            old_value = current.value_of(key)
            if old_value != new_value:
                changed.append(key)
                self._record_change(
                    AuditAction.UPDATE,
                    key,
                    f"{SETTINGS_DOC_ID}.{key}",
                    old_value,
                    new_value,
                    admin_id,
                    admin_name,
                )
        return changed

    def _normalize(self, key: str, value: Any) -> Any:
        if key == SettingKey.DISCORD_WEBHOOK_URL.value and isinstance(value, str):
            return value.strip() or None
        if key in (
            SettingKey.LOAN_RETURN_START_TIME.value,
            SettingKey.LOAN_RETURN_END_TIME.value,
        ) and value == "":
            return None
        return value

    def _check_window(self, current: SystemSettings, changes: dict[str, Any]) -> None:
        start = changes.get(
            SettingKey.LOAN_RETURN_START_TIME.value, current.loan_return_start_time
        )
        end = changes.get(SettingKey.LOAN_RETURN_END_TIME.value, current.loan_return_end_time)
        error = validate_return_window(start, end)
        if error:
            raise ValidationError(error)

    def _write_settings(self, values: dict[str, Any], admin_id: str) -> None:
        changes = {
            **values,
            "lastUpdated": format_timestamp(self.clock.now()),
            "lastUpdatedBy": admin_id,
        }
        self.store.update(Collections.SETTINGS, SETTINGS_DOC_ID, changes)

    # -------------------------------------------------------------------------
    # Closed Dates
    # -------------------------------------------------------------------------

    def add_closed_date(
        self,
        day: Any,
        reason: str,
        admin_id: str,
        admin_name: str = "Admin",
        is_recurring: bool = False,
        recurring_pattern: Optional[str] = None,
    ) -> ClosedDate:
        """Add a closed date.

        Args:
            day: date, datetime or ISO string; time of day is ignored
            reason: Why the day is closed (1-200 characters)
            admin_id: Acting administrator
            is_recurring: Repeat every year on the same month and day

        Raises:
            ValidationError: On a missing reason or an invalid date
        """
        try:
            payload = ClosedDateCreate(
                date=day,
                reason=reason,
                is_recurring=is_recurring,
                recurring_pattern=recurring_pattern,
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid closed date", e) from e

        error = validate_closed_date(payload.date, self.clock.today())
        if error:
            raise ValidationError(error)

        closed = ClosedDate(
            date=payload.date,
            reason=payload.reason,
            is_recurring=payload.is_recurring,
            recurring_pattern=payload.recurring_pattern,
            created_by=admin_id,
            created_at=self.clock.now(),
        )
        doc = self.store.add(Collections.CLOSED_DATES, closed.to_document())
        closed = ClosedDate.from_document(doc)

        self._record_change(
            AuditAction.CREATE,
            SettingType.CLOSED_DATE.value,
            f"closedDates/{closed.id}",
            None,
            closed.to_document(),
            admin_id,
            admin_name,
        )
        return closed

    def remove_closed_date(
        self, closed_date_id: str, admin_id: str, admin_name: str = "Admin"
    ) -> None:
        """Remove a closed date.

        Raises:
            NotFoundError: If no closed date has this ID
        """
        doc = self.store.get(Collections.CLOSED_DATES, closed_date_id)
        if not doc:
            raise NotFoundError("Closed date", closed_date_id)
        closed = ClosedDate.from_document(doc)

        self.store.delete(Collections.CLOSED_DATES, closed_date_id)
        self._record_change(
            AuditAction.DELETE,
            SettingType.CLOSED_DATE.value,
            f"closedDates/{closed_date_id}",
            closed.to_document(),
            None,
            admin_id,
            admin_name,
        )

    def get_closed_dates(self) -> list[ClosedDate]:
        """All closed dates, ascending by date."""
        docs = self.store.query(Collections.CLOSED_DATES, order_by="date")
        return [ClosedDate.from_document(d) for d in docs]

    # -------------------------------------------------------------------------
    # Category Limits
    # -------------------------------------------------------------------------

    def set_category_limit(
        self,
        category_id: str,
        category_name: str,
        limit: int,
        admin_id: str,
        admin_name: str = "Admin",
    ) -> CategoryLimit:
        """Create or change a category limit. 0 disables the category.

        Raises:
            ValidationError: If the limit is not a non-negative integer
        """
        try:
            payload = CategoryLimitSet(
                category_id=category_id, category_name=category_name, limit=limit
            )
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic("Invalid category limit", e) from e

        old_limit = self.get_category_limit(payload.category_id)
        record = CategoryLimit(
            category_id=payload.category_id,
            category_name=payload.category_name,
            limit=payload.limit,
            updated_by=admin_id,
            updated_at=self.clock.now(),
        )
        self.store.put(Collections.CATEGORY_LIMITS, payload.category_id, record.to_document())
        record.id = payload.category_id

        self._record_change(
            AuditAction.CREATE if old_limit is None else AuditAction.UPDATE,
            SettingType.CATEGORY_LIMIT.value,
            f"categoryLimits/{payload.category_id}",
            old_limit,
            payload.limit,
            admin_id,
            admin_name,
        )
        return record

    def get_category_limit(self, category_id: str) -> Optional[int]:
        """Explicit limit for a category, or None when the default applies."""
        record = self.get_category_limit_record(category_id)
        return record.limit if record else None

    def get_category_limit_record(self, category_id: str) -> Optional[CategoryLimit]:
        doc = self.store.get(Collections.CATEGORY_LIMITS, category_id)
        return CategoryLimit.from_document(doc) if doc else None

    def get_all_category_limits(self) -> list[CategoryLimit]:
        docs = self.store.query(Collections.CATEGORY_LIMITS, order_by="categoryName")
        return [CategoryLimit.from_document(d) for d in docs]

    def remove_category_limit(
        self, category_id: str, admin_id: str, admin_name: str = "Admin"
    ) -> None:
        """Drop an explicit limit so the default applies again."""
        old_limit = self.get_category_limit(category_id)
        if old_limit is None:
            raise NotFoundError("Category limit", category_id)

        self.store.delete(Collections.CATEGORY_LIMITS, category_id)
        self._record_change(
            AuditAction.DELETE,
            SettingType.CATEGORY_LIMIT.value,
            f"categoryLimits/{category_id}",
            old_limit,
            None,
            admin_id,
            admin_name,
        )

    # -------------------------------------------------------------------------
    # Audit Log
    # -------------------------------------------------------------------------

    def get_audit_log(self, filters: Optional[AuditLogFilter] = None) -> list[AuditLogEntry]:
        """Audit entries, newest first."""
        return self.audit.entries(filters)

    # -------------------------------------------------------------------------
    # Export / Import / Backup
    # -------------------------------------------------------------------------

    def export_settings(
        self,
        include_sensitive: bool = False,
        admin_id: str = "unknown",
        admin_name: str = "Unknown Admin",
    ) -> dict[str, Any]:
        """Snapshot settings, closed dates and category limits.

        The webhook URL is only included when ``include_sensitive`` is set.
        """
        return self._export(include_sensitive, admin_id, admin_name).to_dict()

    def _export(
        self, include_sensitive: bool, admin_id: str, admin_name: str
    ) -> SettingsExport:
        settings = self.get_settings()
        closed_dates = self.get_closed_dates()
        category_limits = self.get_all_category_limits()

        settings_section = {key: settings.value_of(key) for key in EXPORTED_SETTINGS}
        if include_sensitive:
            settings_section[SettingKey.DISCORD_WEBHOOK_URL.value] = (
                settings.discord_webhook_url
            )

        export = SettingsExport(
            metadata=ExportMetadata(
                export_date=self.clock.now(),
                exported_by=admin_name,
                exported_by_user_id=admin_id,
                version=settings.version,
                include_sensitive=include_sensitive,
            ),
            settings=settings_section,
            closed_dates=[
                {
                    "date": cd.date.isoformat(),
                    "reason": cd.reason,
                    "isRecurring": cd.is_recurring,
                    "recurringPattern": (
                        cd.recurring_pattern.value if cd.recurring_pattern else None
                    ),
                }
                for cd in closed_dates
            ],
            category_limits=[
                {
                    "categoryId": cl.category_id,
                    "categoryName": cl.category_name,
                    "limit": cl.limit,
                }
                for cl in category_limits
            ],
        )

        self.audit.log(
            admin_id,
            admin_name,
            AuditAction.EXPORT,
            SettingType.SETTINGS_EXPORT.value,
            "settings/export",
            None,
            {
                "includeSensitive": include_sensitive,
                "itemCount": len(closed_dates) + len(category_limits),
            },
        )
        return export

    def create_backup(self, admin_id: str = "system", admin_name: str = "System") -> SettingsBackup:
        """Store a full sensitive export as a backup snapshot."""
        export = self._export(True, admin_id, admin_name)
        now = self.clock.now()
        metadata = export.metadata.model_copy(
            update={"is_backup": True, "backup_date": now, "backup_by": admin_name}
        )
        backup = SettingsBackup(
            metadata=metadata,
            settings=export.settings,
            closed_dates=export.closed_dates,
            category_limits=export.category_limits,
            created_at=now,
            created_by=admin_id,
        )
        doc = self.store.add(Collections.SETTINGS_BACKUPS, backup.to_document())
        backup.id = doc["id"]

        self.audit.log(
            admin_id,
            admin_name,
            AuditAction.BACKUP,
            SettingType.SETTINGS_BACKUP.value,
            f"settingsBackups/{backup.id}",
            None,
            {"backupId": backup.id},
        )
        logger.info("settings_backup_created", backup_id=backup.id, admin_id=admin_id)
        return backup

    def list_backups(self, limit: Optional[int] = None) -> list[SettingsBackup]:
        """Backups, newest first."""
        docs = self.store.query(
            Collections.SETTINGS_BACKUPS, order_by="createdAt", descending=True, limit=limit
        )
        return [SettingsBackup.from_document(d) for d in docs]

    def get_backup(self, backup_id: str) -> SettingsBackup:
        doc = self.store.get(Collections.SETTINGS_BACKUPS, backup_id)
        if not doc:
            raise NotFoundError("Settings backup", backup_id)
        return SettingsBackup.from_document(doc)

    def import_settings(
        self, data: dict[str, Any], admin_id: str, admin_name: str
    ) -> ImportResult:
        """Apply an export envelope.

        The whole payload is validated first; any error raises ValidationError
        with nothing written. A full backup is then taken (a failure there
        aborts). Items are applied one by one and failures are collected in
        the returned stats rather than raised.
        """
        return self._import(data, admin_id, admin_name, min_category_limit=1)

    def restore_backup(self, backup_id: str, admin_id: str, admin_name: str) -> ImportResult:
        """Re-apply a stored backup.

        Backups may hold disabled categories (limit 0), which a regular import
        refuses, so restores accept them.
        """
        backup = self.get_backup(backup_id)
        logger.info("settings_restore_started", backup_id=backup_id, admin_id=admin_id)
        return self._import(backup.to_export(), admin_id, admin_name, min_category_limit=0)

    def _import(
        self,
        data: dict[str, Any],
        admin_id: str,
        admin_name: str,
        min_category_limit: int,
    ) -> ImportResult:
        errors = validate_import_data(data, min_category_limit=min_category_limit)
        if errors:
            raise ValidationError(f"Import validation failed: {', '.join(errors)}", errors)

        backup = self.create_backup(admin_id, admin_name)
        stats = ImportStats()

        settings_section = data.get("settings") or {}
        if settings_section:
            try:
                changed = self.update_multiple_settings(settings_section, admin_id, admin_name)
                stats.settings_updated = len(changed)
            except EquipLendError as e:
                stats.errors.append(f"Failed to import settings: {e}")

        existing = {
            (cd.date, cd.is_recurring) for cd in self.get_closed_dates()
        }
        for cd in data.get("closedDates") or []:
            try:
                closed = ClosedDateCreate(
                    date=cd["date"],
                    reason=cd["reason"],
                    is_recurring=cd.get("isRecurring") or False,
                    recurring_pattern=cd.get("recurringPattern"),
                )
                if (closed.date, closed.is_recurring) in existing:
                    stats.closed_dates_skipped += 1
                    continue
                self.add_closed_date(
                    closed.date,
                    closed.reason,
                    admin_id,
                    admin_name,
                    closed.is_recurring,
                    closed.recurring_pattern.value if closed.recurring_pattern else None,
                )
                existing.add((closed.date, closed.is_recurring))
                stats.closed_dates_added += 1
            except (EquipLendError, PydanticValidationError) as e:
                stats.errors.append(f"Failed to import closed date {cd.get('date')}: {e}")

        for cl in data.get("categoryLimits") or []:
            try:
                self.set_category_limit(
                    cl["categoryId"], cl["categoryName"], cl["limit"], admin_id, admin_name
                )
                stats.category_limits_updated += 1
            except EquipLendError as e:
                stats.errors.append(
                    f"Failed to import category limit {cl.get('categoryId')}: {e}"
                )

        self.audit.log(
            admin_id,
            admin_name,
            AuditAction.IMPORT,
            SettingType.SETTINGS_IMPORT.value,
            "settings/import",
            None,
            stats.model_dump(by_alias=True),
        )
        logger.info(
            "settings_imported",
            backup_id=backup.id,
            settings_updated=stats.settings_updated,
            closed_dates_added=stats.closed_dates_added,
            category_limits_updated=stats.category_limits_updated,
            errors=len(stats.errors),
        )
        return ImportResult(backup=backup, stats=stats)

    # -------------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------------

    def test_webhook(self) -> bool:
        """Post a test message to the configured webhook.

        Raises:
            ValidationError: If no webhook URL is configured
            ExternalServiceError: If the post fails
        """
        settings = self.get_settings()
        if not settings.discord_webhook_url:
            raise ValidationError("Discord webhook URL is not configured")
        return self.dispatcher.send_webhook(
            webhook_test_message(self.clock.now(), self.org_name),
            url=settings.discord_webhook_url,
        )

    # -------------------------------------------------------------------------
    # Audit + critical fan-out
    # -------------------------------------------------------------------------

    def _record_change(
        self,
        action: AuditAction,
        setting_type: str,
        setting_path: str,
        old_value: Any,
        new_value: Any,
        admin_id: str,
        admin_name: str,
        reason: Optional[str] = None,
    ) -> list[str]:
        """Audit a change and, for critical settings, alert admins and webhook.

        Returns:
            Names of alert effects that failed
        """
        self.audit.log(
            admin_id,
            admin_name,
            action,
            setting_type,
            setting_path,
            old_value,
            new_value,
            reason=reason,
        )
        if setting_type not in CRITICAL_SETTINGS:
            return []
        return self._notify_critical_change(
            action, setting_type, old_value, new_value, admin_name, reason
        )

    def _notify_critical_change(
        self,
        action: AuditAction,
        setting_type: str,
        old_value: Any,
        new_value: Any,
        admin_name: str,
        reason: Optional[str],
    ) -> list[str]:
        label = SETTING_LABELS.get(setting_type, setting_type)
        title, message = self._describe_change(
            action, setting_type, label, old_value, new_value, admin_name
        )
        data = {"settingType": setting_type, "action": action.value, "changedBy": admin_name}
        if reason:
            data["reason"] = reason

        webhook = critical_setting_message(
            label, admin_name, old_value, new_value, self.clock.now(), self.org_name, reason
        )
        effects = [
            (
                "webhook",
                lambda: self.dispatcher.send_webhook(
                    webhook, url=self.get_settings().webhook_url
                ),
            ),
            *fan_out(
                "notify_admin",
                self.directory.list_admin_ids,
                lambda admin_id: self.dispatcher.notify_user(
                    admin_id,
                    NotificationType.SETTINGS_CHANGED,
                    title,
                    message,
                    data,
                    NotificationPriority.HIGH,
                ),
            ),
        ]
        return run_effects(effects)

    @staticmethod
    def _describe_change(
        action: AuditAction,
        setting_type: str,
        label: str,
        old_value: Any,
        new_value: Any,
        admin_name: str,
    ) -> tuple[str, str]:
        if setting_type == SettingType.CLOSED_DATE.value:
            if action == AuditAction.CREATE:
                value = new_value or {}
                return (
                    "Closed date added",
                    f"{admin_name} added closed date {value.get('date', 'N/A')} "
                    f"({value.get('reason') or 'no reason given'})",
                )
            if action == AuditAction.DELETE:
                value = old_value or {}
                return (
                    "Closed date removed",
                    f"{admin_name} removed closed date {value.get('date', 'N/A')}",
                )
            return "Closed date changed", f"{admin_name} changed a closed date"
        if setting_type == SettingType.CATEGORY_LIMIT.value:
            return (
                "Category limit updated",
                f"{admin_name} changed a category limit from "
                f"{format_value(old_value)} to {format_value(new_value)}",
            )
        return (
            f"Critical setting changed: {label}",
            f"{admin_name} changed {label} from {format_value(old_value)} "
            f"to {format_value(new_value)}",
        )
