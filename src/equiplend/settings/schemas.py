"""Pydantic schemas for system settings, closed dates and category limits."""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import Field, StrictInt, field_validator, model_validator

from ..db.schemas import CamelModel, InputModel, StoreModel, Timestamp, datetime_to_day

SETTINGS_DOC_ID = "systemSettings"


class SettingKey(str, Enum):
    """Keys of the system settings singleton."""

    MAX_LOAN_DURATION = "maxLoanDuration"
    MAX_ADVANCE_BOOKING_DAYS = "maxAdvanceBookingDays"
    DEFAULT_CATEGORY_LIMIT = "defaultCategoryLimit"
    LOAN_RETURN_START_TIME = "loanReturnStartTime"
    LOAN_RETURN_END_TIME = "loanReturnEndTime"
    DISCORD_ENABLED = "discordEnabled"
    DISCORD_WEBHOOK_URL = "discordWebhookUrl"


class SettingType(str, Enum):
    """Audit ``settingType`` values that are not plain setting keys."""

    CLOSED_DATE = "closedDate"
    CATEGORY_LIMIT = "categoryLimit"
    SETTINGS_EXPORT = "settings_export"
    SETTINGS_IMPORT = "settings_import"
    SETTINGS_BACKUP = "settings_backup"


# Changes to these notify every administrator and the webhook
CRITICAL_SETTINGS = frozenset(
    {
        SettingKey.MAX_LOAN_DURATION.value,
        SettingKey.MAX_ADVANCE_BOOKING_DAYS.value,
        SettingKey.DEFAULT_CATEGORY_LIMIT.value,
        SettingKey.LOAN_RETURN_START_TIME.value,
        SettingKey.LOAN_RETURN_END_TIME.value,
        "closedDates",
        "categoryLimits",
        SettingType.CLOSED_DATE.value,
        SettingType.CATEGORY_LIMIT.value,
    }
)

SENSITIVE_SETTINGS = frozenset({SettingKey.DISCORD_WEBHOOK_URL.value})

SETTING_LABELS = {
    "maxLoanDuration": "Maximum loan duration",
    "maxAdvanceBookingDays": "Maximum advance booking days",
    "defaultCategoryLimit": "Default category limit",
    "loanReturnStartTime": "Return window start",
    "loanReturnEndTime": "Return window end",
    "discordEnabled": "Discord notifications",
    "discordWebhookUrl": "Discord webhook URL",
    "closedDate": "Closed date",
    "categoryLimit": "Category limit",
}


class SystemSettings(StoreModel):
    """The global policy singleton."""

    max_loan_duration: int = 14
    max_advance_booking_days: int = 30
    default_category_limit: int = 3
    loan_return_start_time: Optional[str] = None
    loan_return_end_time: Optional[str] = None
    discord_enabled: bool = False
    discord_webhook_url: Optional[str] = None
    last_updated: Optional[Timestamp] = None
    last_updated_by: str = "system"
    version: int = 1

    def value_of(self, key: str) -> Any:
        """Read a setting by its wire name."""
        return self.model_dump(by_alias=True)[key]

    @property
    def webhook_url(self) -> Optional[str]:
        """The webhook to alert, or None when alerts are off."""
        return self.discord_webhook_url if self.discord_enabled else None


class RecurringPattern(str, Enum):
    """How a closed date repeats."""

    YEARLY = "yearly"


class ClosedDateCreate(InputModel):
    """Schema for adding a closed date."""

    date: date
    reason: str = Field(..., max_length=200)
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v: Any) -> Any:
        return datetime_to_day(v)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Reason cannot be empty or whitespace only")
        return v

    @model_validator(mode="after")
    def recurring_pattern_matches_flag(self) -> "ClosedDateCreate":
        if self.is_recurring and self.recurring_pattern is None:
            self.recurring_pattern = RecurringPattern.YEARLY
        if not self.is_recurring:
            self.recurring_pattern = None
        return self


class ClosedDate(StoreModel):
    """A day on which borrowing and returning are disallowed."""

    date: date
    reason: str
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None
    created_by: str
    created_at: Timestamp

    @field_validator("date", mode="before")
    @classmethod
    def normalize_date(cls, v: Any) -> Any:
        return datetime_to_day(v)

    def matches(self, day: date) -> bool:
        """True if this entry closes ``day``."""
        if self.date == day:
            return True
        if self.is_recurring and self.recurring_pattern == RecurringPattern.YEARLY:
            return (self.date.month, self.date.day) == (day.month, day.day)
        return False


class CategoryLimitSet(InputModel):
    """Schema for setting a category limit."""

    category_id: str = Field(..., min_length=1)
    category_name: str = Field(..., min_length=1)
    limit: StrictInt = Field(..., ge=0)


class CategoryLimit(StoreModel):
    """Per-category cap on simultaneous borrows. 0 disables borrowing."""

    category_id: str
    category_name: str
    limit: int = Field(..., ge=0)
    updated_by: str
    updated_at: Timestamp


class ExportMetadata(CamelModel):
    """Header of an export envelope."""

    export_date: Timestamp
    exported_by: str
    exported_by_user_id: str
    version: int
    include_sensitive: bool
    is_backup: Optional[bool] = None
    backup_date: Optional[Timestamp] = None
    backup_by: Optional[str] = None


class SettingsExport(CamelModel):
    """Export envelope: metadata, settings, closed dates and category limits."""

    metadata: ExportMetadata
    settings: dict[str, Any]
    closed_dates: list[dict[str, Any]] = Field(default_factory=list)
    category_limits: list[dict[str, Any]] = Field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["metadata"] = self.metadata.model_dump(
            mode="json", by_alias=True, exclude_none=True
        )
        return data


class SettingsBackup(StoreModel):
    """A stored full export, kept for manual restore."""

    metadata: ExportMetadata
    settings: dict[str, Any]
    closed_dates: list[dict[str, Any]] = Field(default_factory=list)
    category_limits: list[dict[str, Any]] = Field(default_factory=list)
    created_at: Timestamp
    created_by: str

    def to_export(self) -> dict[str, Any]:
        """The envelope as it would be imported."""
        return SettingsExport(
            metadata=self.metadata,
            settings=self.settings,
            closed_dates=self.closed_dates,
            category_limits=self.category_limits,
        ).to_dict()


class ImportStats(CamelModel):
    """What an import applied."""

    settings_updated: int = 0
    closed_dates_added: int = 0
    closed_dates_skipped: int = 0
    category_limits_updated: int = 0
    errors: list[str] = Field(default_factory=list)


class ImportResult(CamelModel):
    """Outcome of an import: the safety backup and the stats."""

    backup: SettingsBackup
    stats: ImportStats
