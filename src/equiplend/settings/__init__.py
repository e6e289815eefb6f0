"""System settings governance."""

from .manager import SettingsGovernanceService
from .schemas import (
    CRITICAL_SETTINGS,
    CategoryLimit,
    ClosedDate,
    ImportResult,
    ImportStats,
    SettingKey,
    SettingsBackup,
    SystemSettings,
)

__all__ = [
    "SettingsGovernanceService",
    "CRITICAL_SETTINGS",
    "CategoryLimit",
    "ClosedDate",
    "ImportResult",
    "ImportStats",
    "SettingKey",
    "SettingsBackup",
    "SystemSettings",
]
