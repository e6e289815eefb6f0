"""Tests for SettingsGovernanceService."""

from datetime import date, datetime, timedelta, timezone

import pytest

from equiplend.audit import AuditAction, AuditLogFilter
from equiplend.db import Collections
from equiplend.errors import NotFoundError, ValidationError
from equiplend.notifications import NotificationPriority, NotificationType
from equiplend.settings import CRITICAL_SETTINGS, SettingKey


@pytest.fixture
def settings(services):
    return services.settings


@pytest.fixture
def discord_on(settings, dispatcher, clock, webhook_url):
    """Enable Discord alerts, then forget the deliveries that caused."""
    settings.update_multiple_settings(
        {"discordEnabled": True, "discordWebhookUrl": webhook_url}, "admin-1", "Ada Admin"
    )
    clock.advance(seconds=1)
    dispatcher.clear()
    return webhook_url


class TestGetSettings:
    """Tests for the settings singleton."""

    def test_defaults(self, settings):
        """Test that a fresh store gets default settings."""
        current = settings.get_settings()
        assert current.max_loan_duration == 14
        assert current.max_advance_booking_days == 30
        assert current.default_category_limit == 3
        assert current.loan_return_start_time is None
        assert current.discord_enabled is False
        assert current.webhook_url is None

    def test_initialized_once(self, services, settings):
        """Test that defaults are written to the store on first read."""
        settings.get_settings()
        assert services.store.get(Collections.SETTINGS, "systemSettings") is not None
        assert settings.get_settings().version == 1

    def test_webhook_url_needs_enabled(self, settings, webhook_url):
        """Test that a URL alone does not enable alerts."""
        settings.update_setting("discordWebhookUrl", webhook_url, "admin-1", "Ada Admin")
        current = settings.get_settings()
        assert current.discord_webhook_url == webhook_url
        assert current.webhook_url is None


class TestUpdateSetting:
    """Tests for single setting updates."""

    def test_update_records_audit(self, settings):
        """Test that an update writes one audit entry with old and new values."""
        settings.update_setting(
            "maxLoanDuration", 21, "admin-1", "Ada Admin", reason="Longer projects"
        )

        assert settings.get_settings().max_loan_duration == 21
        assert settings.get_settings().last_updated_by == "admin-1"
        entries = settings.get_audit_log()
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action == AuditAction.UPDATE
        assert entry.setting_type == "maxLoanDuration"
        assert entry.setting_path == "systemSettings.maxLoanDuration"
        assert entry.old_value == 14
        assert entry.new_value == 21
        assert entry.reason == "Longer projects"

    def test_unknown_key_rejected(self, settings):
        """Test that unknown keys are refused without an audit entry."""
        with pytest.raises(ValidationError, match="Unknown setting"):
            settings.update_setting("maxCoffee", 3, "admin-1", "Ada Admin")
        assert settings.get_audit_log() == []

    @pytest.mark.parametrize(
        "key,value",
        [
            ("maxLoanDuration", 0),
            ("maxLoanDuration", 366),
            ("maxLoanDuration", 7.5),
            ("maxAdvanceBookingDays", "30"),
            ("defaultCategoryLimit", 101),
            ("loanReturnStartTime", "25:00"),
            ("loanReturnEndTime", "9am"),
            ("discordEnabled", "yes"),
            ("discordWebhookUrl", "https://example.com/hook"),
        ],
    )
    def test_invalid_values(self, settings, key, value):
        """Test range and format validation."""
        with pytest.raises(ValidationError):
            settings.update_setting(key, value, "admin-1", "Ada Admin")

    def test_return_window_order(self, settings):
        """Test that the return window must start before it ends."""
        settings.update_setting("loanReturnEndTime", "12:00", "admin-1", "Ada Admin")
        with pytest.raises(ValidationError, match="start must be before end"):
            settings.update_setting("loanReturnStartTime", "13:00", "admin-1", "Ada Admin")

        settings.update_setting("loanReturnStartTime", "09:00", "admin-1", "Ada Admin")
        assert settings.get_settings().loan_return_start_time == "09:00"

    def test_clear_webhook_url(self, settings, webhook_url):
        """Test that an empty webhook URL clears it."""
        settings.update_setting("discordWebhookUrl", webhook_url, "admin-1", "Ada Admin")
        settings.update_setting("discordWebhookUrl", "  ", "admin-1", "Ada Admin")
        assert settings.get_settings().discord_webhook_url is None

    def test_webhook_url_message(self, settings):
        """Test that settings report the same webhook URL error as the client."""
        with pytest.raises(ValidationError, match="Invalid Discord webhook URL format"):
            settings.update_setting(
                "discordWebhookUrl", "https://example.com/hook", "admin-1", "Ada Admin"
            )


class TestUpdateMultiple:
    """Tests for batch setting updates."""

    def test_all_or_nothing(self, settings):
        """Test that one bad value blocks every write."""
        with pytest.raises(ValidationError) as exc:
            settings.update_multiple_settings(
                {"maxLoanDuration": 20, "defaultCategoryLimit": 0}, "admin-1", "Ada Admin"
            )
        assert len(exc.value.errors) == 1
        assert settings.get_settings().max_loan_duration == 14
        assert settings.get_audit_log() == []

    def test_only_changes_audited(self, settings):
        """Test that unchanged keys produce no audit entry."""
        settings.update_multiple_settings(
            {"maxLoanDuration": 14, "maxAdvanceBookingDays": 45}, "admin-1", "Ada Admin"
        )
        entries = settings.get_audit_log()
        assert [e.setting_type for e in entries] == ["maxAdvanceBookingDays"]
        assert settings.get_settings().max_advance_booking_days == 45

    def test_returns_changed_keys(self, settings):
        """Test that only keys whose value moved are reported."""
        changed = settings.update_multiple_settings(
            {"maxLoanDuration": 14, "maxAdvanceBookingDays": 45, "discordEnabled": False},
            "admin-1",
            "Ada Admin",
        )
        assert changed == ["maxAdvanceBookingDays"]


class TestCriticalFanOut:
    """Tests for alerts on critical changes."""

    def test_critical_keys(self):
        """Test the set of critical settings."""
        for key in (
            "maxLoanDuration",
            "maxAdvanceBookingDays",
            "defaultCategoryLimit",
            "loanReturnStartTime",
            "loanReturnEndTime",
            "closedDate",
            "categoryLimit",
        ):
            assert key in CRITICAL_SETTINGS
        assert SettingKey.DISCORD_ENABLED.value not in CRITICAL_SETTINGS
        assert SettingKey.DISCORD_WEBHOOK_URL.value not in CRITICAL_SETTINGS

    def test_critical_change_alerts(self, settings, dispatcher, discord_on):
        """Test one webhook post and one notification per active admin."""
        settings.update_setting("maxLoanDuration", 7, "admin-1", "Ada Admin")

        assert len(dispatcher.webhooks) == 1
        message, url = dispatcher.webhooks[0]
        assert url == discord_on
        assert message.embeds[0]["title"] == "Critical Setting Changed"

        alerts = dispatcher.of_type(NotificationType.SETTINGS_CHANGED)
        assert sorted(n["user_id"] for n in alerts) == ["admin-1", "admin-2"]
        assert all(n["priority"] == NotificationPriority.HIGH for n in alerts)
        assert "Maximum loan duration" in alerts[0]["title"]

    def test_non_critical_change_silent(self, settings, dispatcher):
        """Test that non-critical settings only write the audit entry."""
        settings.update_setting("discordEnabled", True, "admin-1", "Ada Admin")

        assert dispatcher.webhooks == []
        assert dispatcher.notifications == []
        assert len(settings.get_audit_log()) == 1

    def test_webhook_not_delivered_when_disabled(self, settings, dispatcher):
        """Test that admins still hear about changes with Discord off."""
        settings.update_setting("defaultCategoryLimit", 5, "admin-1", "Ada Admin")

        assert dispatcher.delivered_webhooks == []
        assert len(dispatcher.of_type(NotificationType.SETTINGS_CHANGED)) == 2

    def test_alert_failure_keeps_change(self, settings, dispatcher, discord_on):
        """Test that a failing webhook does not roll back the setting."""
        dispatcher.fail_webhook = True
        dispatcher.failing_users.add("admin-2")

        settings.update_setting("maxLoanDuration", 10, "admin-1", "Ada Admin")

        assert settings.get_settings().max_loan_duration == 10
        assert len(dispatcher.of_type(NotificationType.SETTINGS_CHANGED)) == 1

    def test_admin_lookup_failure_keeps_change(
        self, services, settings, dispatcher, discord_on, monkeypatch
    ):
        """Test that a failing admin lookup neither raises nor blocks the webhook."""

        def down():
            raise RuntimeError("directory down")

        monkeypatch.setattr(services.directory, "list_admin_ids", down)

        settings.update_setting("maxLoanDuration", 20, "admin-1", "Ada Admin")

        assert settings.get_settings().max_loan_duration == 20
        assert len(dispatcher.delivered_webhooks) == 1
        assert dispatcher.of_type(NotificationType.SETTINGS_CHANGED) == []
        assert len(settings.get_audit_log(AuditLogFilter(setting_type="maxLoanDuration"))) == 1

    def test_closed_date_is_critical(self, settings, dispatcher):
        """Test that adding a closed date alerts admins."""
        settings.add_closed_date(date(2024, 12, 25), "Christmas Day", "admin-1", "Ada Admin")

        alerts = dispatcher.of_type(NotificationType.SETTINGS_CHANGED)
        assert len(alerts) == 2
        assert alerts[0]["title"] == "Closed date added"
        assert "2024-12-25" in alerts[0]["message"]

    def test_send_test_webhook(self, settings, dispatcher, discord_on):
        """Test posting a test message to the configured webhook."""
        assert settings.test_webhook() is True
        message, url = dispatcher.webhooks[0]
        assert url == discord_on
        assert message.embeds[0]["title"] == "Webhook Connection Test"

    def test_test_webhook_without_url(self, settings):
        """Test that a test post needs a configured URL."""
        with pytest.raises(ValidationError):
            settings.test_webhook()


class TestClosedDates:
    """Tests for closed date management."""

    def test_add_and_list(self, settings):
        """Test that closed dates list in date order."""
        settings.add_closed_date(date(2024, 3, 1), "Spring break", "admin-1")
        settings.add_closed_date(date(2024, 2, 1), "Stocktake", "admin-1")

        assert [cd.date for cd in settings.get_closed_dates()] == [
            date(2024, 2, 1),
            date(2024, 3, 1),
        ]

    def test_time_of_day_ignored(self, settings):
        """Test that a datetime is stored as its calendar day."""
        closed = settings.add_closed_date(
            datetime(2024, 2, 14, 16, 30, tzinfo=timezone.utc), "Half day", "admin-1"
        )
        assert closed.date == date(2024, 2, 14)

    def test_recurring_defaults_to_yearly(self, settings):
        """Test that recurring dates get the yearly pattern."""
        closed = settings.add_closed_date(
            date(2024, 12, 25), "Christmas Day", "admin-1", is_recurring=True
        )
        assert closed.recurring_pattern.value == "yearly"

    def test_reason_required(self, settings):
        """Test that blank reasons are rejected."""
        with pytest.raises(ValidationError):
            settings.add_closed_date(date(2024, 2, 1), "   ", "admin-1")

    def test_reason_length(self, settings):
        """Test that reasons are capped at 200 characters."""
        with pytest.raises(ValidationError):
            settings.add_closed_date(date(2024, 2, 1), "x" * 201, "admin-1")

    def test_too_old(self, settings):
        """Test that dates more than a year back are rejected."""
        with pytest.raises(ValidationError, match="1 year"):
            settings.add_closed_date(date(2022, 12, 1), "Ancient history", "admin-1")

    def test_add_and_remove_audited(self, settings, clock):
        """Test that add and remove each leave an audit entry."""
        closed = settings.add_closed_date(date(2024, 2, 1), "Stocktake", "admin-1", "Ada Admin")
        clock.advance(seconds=1)
        settings.remove_closed_date(closed.id, "admin-2", "Bo Admin")

        entries = settings.get_audit_log()
        assert [e.action for e in entries] == [AuditAction.DELETE, AuditAction.CREATE]
        assert entries[0].old_value["date"] == "2024-02-01"
        assert entries[1].setting_path == f"closedDates/{closed.id}"
        assert settings.get_closed_dates() == []

    def test_remove_missing(self, settings):
        """Test that removing an unknown closed date raises NotFoundError."""
        with pytest.raises(NotFoundError):
            settings.remove_closed_date("missing", "admin-1")


class TestCategoryLimits:
    """Tests for category limit management."""

    def test_create_then_update(self, settings, clock):
        """Test that the first write is a create and later ones updates."""
        settings.set_category_limit("cameras", "Cameras", 2, "admin-1")
        clock.advance(seconds=1)
        settings.set_category_limit("cameras", "Cameras", 4, "admin-1")

        assert settings.get_category_limit("cameras") == 4
        entries = settings.get_audit_log(AuditLogFilter(setting_type="categoryLimit"))
        assert [e.action for e in entries] == [AuditAction.UPDATE, AuditAction.CREATE]
        assert entries[0].old_value == 2
        assert entries[0].new_value == 4

    def test_zero_allowed(self, settings):
        """Test that 0 is a valid limit."""
        record = settings.set_category_limit("tripods", "Tripods", 0, "admin-1")
        assert record.limit == 0

    @pytest.mark.parametrize("limit", [-1, 1.5, "3"])
    def test_invalid_limits(self, settings, limit):
        """Test that limits must be non-negative integers."""
        with pytest.raises(ValidationError):
            settings.set_category_limit("cameras", "Cameras", limit, "admin-1")

    def test_list_sorted_by_name(self, settings):
        """Test that limits list alphabetically by category name."""
        settings.set_category_limit("tripods", "Tripods", 1, "admin-1")
        settings.set_category_limit("audio", "Audio", 2, "admin-1")
        assert [cl.category_name for cl in settings.get_all_category_limits()] == [
            "Audio",
            "Tripods",
        ]

    def test_remove(self, settings):
        """Test that removing a limit restores the default."""
        settings.set_category_limit("cameras", "Cameras", 1, "admin-1")
        settings.remove_category_limit("cameras", "admin-1")
        assert settings.get_category_limit("cameras") is None

        with pytest.raises(NotFoundError):
            settings.remove_category_limit("cameras", "admin-1")


class TestAuditLog:
    """Tests for reading the audit log."""

    def test_newest_first_and_filters(self, settings, clock):
        """Test ordering plus admin, type and date filters."""
        start = clock.now()
        settings.update_setting("maxLoanDuration", 10, "admin-1", "Ada Admin")
        clock.advance(hours=1)
        settings.update_setting("maxAdvanceBookingDays", 20, "admin-2", "Bo Admin")
        clock.advance(hours=1)
        settings.set_category_limit("cameras", "Cameras", 2, "admin-1", "Ada Admin")

        entries = settings.get_audit_log()
        assert [e.setting_type for e in entries] == [
            "categoryLimit",
            "maxAdvanceBookingDays",
            "maxLoanDuration",
        ]

        by_admin = settings.get_audit_log(AuditLogFilter(admin_id="admin-2"))
        assert [e.admin_name for e in by_admin] == ["Bo Admin"]

        window = settings.get_audit_log(
            AuditLogFilter(start=start + timedelta(minutes=30), end=start + timedelta(minutes=90))
        )
        assert [e.setting_type for e in window] == ["maxAdvanceBookingDays"]

        assert len(settings.get_audit_log(AuditLogFilter(limit=2))) == 2
