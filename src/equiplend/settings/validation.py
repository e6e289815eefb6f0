"""Validation rules for settings values and import payloads.

Each ``validate_*`` function returns None when the value is fine, otherwise a
human-readable error.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

from ..notifications.discord import validate_webhook_url
from .schemas import SettingKey

TIME_PATTERN = re.compile(r"^\d{2}:\d{2}$")

LOAN_DURATION_RANGE = (1, 365)
ADVANCE_BOOKING_RANGE = (1, 365)
CATEGORY_LIMIT_RANGE = (1, 100)
MAX_REASON_LENGTH = 200
MAX_CLOSED_DATE_AGE_DAYS = 365


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_int_range(value: Any, label: str, bounds: tuple[int, int], unit: str) -> Optional[str]:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return f"{label} must be a number"
    if not _is_int(value):
        return f"{label} must be an integer"
    low, high = bounds
    if value < low or value > high:
        return f"{label} must be between {low} and {high} {unit}"
    return None


def validate_loan_duration(value: Any) -> Optional[str]:
    return _validate_int_range(value, "Loan duration", LOAN_DURATION_RANGE, "days")


def validate_advance_booking_days(value: Any) -> Optional[str]:
    return _validate_int_range(
        value, "Advance booking period", ADVANCE_BOOKING_RANGE, "days"
    )


def validate_default_category_limit(value: Any) -> Optional[str]:
    return _validate_int_range(value, "Category limit", CATEGORY_LIMIT_RANGE, "items")


def is_valid_time(value: Any) -> bool:
    if not isinstance(value, str) or not TIME_PATTERN.match(value):
        return False
    hours, minutes = (int(part) for part in value.split(":"))
    return hours < 24 and minutes < 60


def validate_time(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not is_valid_time(value):
        return "Invalid time format (HH:mm)"
    return None


def validate_optional_webhook_url(value: Any) -> Optional[str]:
    """None clears the webhook; anything else must be a Discord webhook URL."""
    if value is None:
        return None
    return validate_webhook_url(value)


def validate_bool(value: Any) -> Optional[str]:
    if not isinstance(value, bool):
        return "discordEnabled must be a boolean"
    return None


SETTING_VALIDATORS = {
    SettingKey.MAX_LOAN_DURATION.value: validate_loan_duration,
    SettingKey.MAX_ADVANCE_BOOKING_DAYS.value: validate_advance_booking_days,
    SettingKey.DEFAULT_CATEGORY_LIMIT.value: validate_default_category_limit,
    SettingKey.LOAN_RETURN_START_TIME.value: validate_time,
    SettingKey.LOAN_RETURN_END_TIME.value: validate_time,
    SettingKey.DISCORD_ENABLED.value: validate_bool,
    SettingKey.DISCORD_WEBHOOK_URL.value: validate_optional_webhook_url,
}


def validate_setting(key: str, value: Any) -> Optional[str]:
    """Validate one setting. Unknown keys are an error."""
    validator = SETTING_VALIDATORS.get(key)
    if validator is None:
        return f"Unknown setting: {key}"
    return validator(value)


def validate_return_window(start: Any, end: Any) -> Optional[str]:
    """Start must precede end when both are set."""
    if start and end and is_valid_time(start) and is_valid_time(end) and start >= end:
        return "Invalid return time window: start must be before end"
    return None


def validate_closed_date(value: date, today: date) -> Optional[str]:
    if (today - value).days > MAX_CLOSED_DATE_AGE_DAYS:
        return "Date cannot be more than 1 year in the past"
    return None


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            if "T" in value:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


def validate_import_data(data: Any, min_category_limit: int = 1) -> list[str]:
    """Check the structure of an import envelope.

    Args:
        data: The parsed envelope
        min_category_limit: Smallest limit accepted for a category entry

    Returns:
        Every problem found; empty when the payload may be applied
    """
    if not isinstance(data, dict):
        return ["Import data must be an object"]

    errors = []

    if not data.get("metadata"):
        errors.append("Missing metadata section")

    settings = data.get("settings")
    if settings is not None:
        if not isinstance(settings, dict):
            errors.append("settings must be an object")
        else:
            errors.extend(_validate_import_settings(settings))

    closed_dates = data.get("closedDates")
    if closed_dates is not None:
        if not isinstance(closed_dates, list):
            errors.append("closedDates must be an array")
        else:
            for index, cd in enumerate(closed_dates):
                if not isinstance(cd, dict):
                    errors.append(f"closedDates[{index}]: must be an object")
                    continue
                if not cd.get("date"):
                    errors.append(f"closedDates[{index}]: missing date")
                elif _parse_date(cd["date"]) is None:
                    errors.append(f"closedDates[{index}]: invalid date format")
                reason = cd.get("reason")
                if not isinstance(reason, str) or not reason.strip():
                    errors.append(f"closedDates[{index}]: missing or invalid reason")
                elif len(reason.strip()) > MAX_REASON_LENGTH:
                    errors.append(
                        f"closedDates[{index}]: reason must be {MAX_REASON_LENGTH} characters or less"
                    )
                pattern = cd.get("recurringPattern")
                if pattern not in (None, "yearly"):
                    errors.append(f"closedDates[{index}]: unsupported recurringPattern")

    category_limits = data.get("categoryLimits")
    if category_limits is not None:
        if not isinstance(category_limits, list):
            errors.append("categoryLimits must be an array")
        else:
            for index, cl in enumerate(category_limits):
                if not isinstance(cl, dict):
                    errors.append(f"categoryLimits[{index}]: must be an object")
                    continue
                if not isinstance(cl.get("categoryId"), str) or not cl["categoryId"]:
                    errors.append(f"categoryLimits[{index}]: missing or invalid categoryId")
                if not isinstance(cl.get("categoryName"), str) or not cl["categoryName"]:
                    errors.append(f"categoryLimits[{index}]: missing or invalid categoryName")
                limit = cl.get("limit")
                if not _is_int(limit) or limit < min_category_limit:
                    if min_category_limit >= 1:
                        errors.append(
                            f"categoryLimits[{index}]: limit must be a positive integer "
                            f"(minimum {min_category_limit})"
                        )
                    else:
                        errors.append(
                            f"categoryLimits[{index}]: limit must be a non-negative integer"
                        )

    return errors


def _validate_import_settings(settings: dict[str, Any]) -> list[str]:
    errors = []
    for key, value in settings.items():
        if key == SettingKey.DISCORD_WEBHOOK_URL.value and value == "":
            continue
        error = validate_setting(key, value)
        if error:
            errors.append(f"Invalid {key}: {error}")

    window_error = validate_return_window(
        settings.get(SettingKey.LOAN_RETURN_START_TIME.value),
        settings.get(SettingKey.LOAN_RETURN_END_TIME.value),
    )
    if window_error:
        errors.append(window_error)
    return errors
