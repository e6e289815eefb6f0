"""Tests for the CLI interface."""

import json
from datetime import date, timedelta

import pytest
from typer.testing import CliRunner

from equiplend.cli import app, parse_value
from equiplend.services import build_services


@pytest.fixture(autouse=True)
def setup_test_db(cli_env):
    """Every CLI test runs against its own database file."""
    yield cli_env


@pytest.fixture
def runner(cli_runner) -> CliRunner:
    return cli_runner


def current():
    """Services over the same database the CLI used."""
    return build_services()


def future_day(days: int = 30) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


class TestCLIBasics:
    """Tests for basic CLI functionality."""

    def test_help(self, runner: CliRunner):
        """Test that help command works."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Equipment lending" in result.stdout

    def test_version(self, runner: CliRunner):
        """Test version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.stdout

    @pytest.mark.parametrize(
        "raw,expected",
        [("14", 14), ("true", True), ("null", None), ("09:00", "09:00"), ("abc", "abc")],
    )
    def test_parse_value(self, raw, expected):
        assert parse_value(raw) == expected


class TestSettingsCommands:
    """Tests for settings show/set."""

    def test_show_defaults(self, runner: CliRunner):
        result = runner.invoke(app, ["settings", "show"])
        assert result.exit_code == 0
        assert "maxLoanDuration" in result.stdout
        assert "14" in result.stdout

    def test_set(self, runner: CliRunner):
        """Test changing a setting with a reason."""
        result = runner.invoke(
            app, ["settings", "set", "maxLoanDuration", "21", "--reason", "Exam season"]
        )
        assert result.exit_code == 0
        assert "maxLoanDuration updated" in result.stdout

        services = current()
        assert services.settings.get_settings().max_loan_duration == 21
        entry = services.settings.get_audit_log()[0]
        assert entry.admin_id == "cli"
        assert entry.reason == "Exam season"

    def test_set_out_of_range(self, runner: CliRunner):
        result = runner.invoke(app, ["settings", "set", "maxLoanDuration", "0"])
        assert result.exit_code == 1
        assert "Error" in result.stdout
        assert current().settings.get_settings().max_loan_duration == 14

    def test_set_unknown_key(self, runner: CliRunner):
        result = runner.invoke(app, ["settings", "set", "maxWidgets", "3"])
        assert result.exit_code == 1
        assert "Unknown setting" in result.stdout

    def test_webhook_hidden(self, runner: CliRunner):
        """Test that the webhook URL is masked unless asked for."""
        url = "https://discord.com/api/webhooks/1/tok"
        runner.invoke(app, ["settings", "set", "discordWebhookUrl", url])

        assert url not in runner.invoke(app, ["settings", "show"]).stdout
        assert "(hidden)" in runner.invoke(app, ["settings", "show"]).stdout


class TestClosedDateCommands:
    """Tests for closed-dates commands."""

    def test_add_and_list(self, runner: CliRunner):
        day = future_day()
        result = runner.invoke(app, ["closed-dates", "add", day, "Staff training"])
        assert result.exit_code == 0
        assert f"Closed {day}" in result.stdout

        listing = runner.invoke(app, ["closed-dates", "list"])
        assert day in listing.stdout
        assert "Staff training" in listing.stdout

    def test_add_yearly(self, runner: CliRunner):
        runner.invoke(app, ["closed-dates", "add", future_day(), "Founders Day", "--yearly"])
        [closed] = current().calendar.list_closed_dates()
        assert closed.is_recurring

    def test_invalid_date(self, runner: CliRunner):
        result = runner.invoke(app, ["closed-dates", "add", "next-friday", "Party"])
        assert result.exit_code == 1
        assert "Invalid date" in result.stdout

    def test_remove(self, runner: CliRunner):
        runner.invoke(app, ["closed-dates", "add", future_day(), "Inventory"])
        [closed] = current().calendar.list_closed_dates()

        result = runner.invoke(app, ["closed-dates", "remove", closed.id])
        assert result.exit_code == 0
        assert current().calendar.list_closed_dates() == []

    def test_remove_missing(self, runner: CliRunner):
        result = runner.invoke(app, ["closed-dates", "remove", "nope"])
        assert result.exit_code == 1

    def test_empty_list(self, runner: CliRunner):
        result = runner.invoke(app, ["closed-dates", "list"])
        assert "No closed dates" in result.stdout


class TestLimitCommands:
    """Tests for category limit commands."""

    def test_set_list_check(self, runner: CliRunner):
        result = runner.invoke(app, ["limits", "set", "cameras", "2", "--name", "Cameras"])
        assert result.exit_code == 0

        assert "Cameras" in runner.invoke(app, ["limits", "list"]).stdout

        check = runner.invoke(app, ["limits", "check", "user-1", "cameras"])
        assert check.exit_code == 0
        assert "0 of 2" in check.stdout

    def test_disabled_category(self, runner: CliRunner):
        runner.invoke(app, ["limits", "set", "drones", "0"])

        check = runner.invoke(app, ["limits", "check", "user-1", "drones"])
        assert check.exit_code == 1
        assert "disabled" in check.stdout

    def test_negative_limit(self, runner: CliRunner):
        result = runner.invoke(app, ["limits", "set", "drones", "-1"])
        assert result.exit_code != 0


class TestTransferCommands:
    """Tests for export, import and backup."""

    def test_export_to_file(self, runner: CliRunner, tmp_path):
        runner.invoke(app, ["settings", "set", "discordWebhookUrl", "https://discord.com/api/webhooks/1/tok"])
        out = tmp_path / "settings.json"

        result = runner.invoke(app, ["export", "--output", str(out)])
        assert result.exit_code == 0

        data = json.loads(out.read_text())
        assert data["metadata"]["exportedByUserId"] == "cli"
        assert "discordWebhookUrl" not in data["settings"]

    def test_export_sensitive(self, runner: CliRunner, tmp_path):
        url = "https://discord.com/api/webhooks/1/tok"
        runner.invoke(app, ["settings", "set", "discordWebhookUrl", url])
        out = tmp_path / "settings.json"

        runner.invoke(app, ["export", "--sensitive", "-o", str(out)])
        assert json.loads(out.read_text())["settings"]["discordWebhookUrl"] == url

    def test_import(self, runner: CliRunner, tmp_path):
        """Test applying an export file."""
        source = tmp_path / "import.json"
        source.write_text(
            json.dumps(
                {
                    "metadata": {"exportedBy": "Elsewhere", "version": 1},
                    "settings": {"maxLoanDuration": 28},
                    "closedDates": [{"date": future_day(10), "reason": "Move day"}],
                    "categoryLimits": [
                        {"categoryId": "audio", "categoryName": "Audio", "limit": 2}
                    ],
                }
            )
        )

        result = runner.invoke(app, ["import", str(source)])
        assert result.exit_code == 0
        assert "Import complete" in result.stdout

        services = current()
        assert services.settings.get_settings().max_loan_duration == 28
        assert services.settings.get_category_limit("audio") == 2
        assert len(services.settings.list_backups()) == 1

    def test_import_rejected(self, runner: CliRunner, tmp_path):
        """Test that an invalid file is refused and nothing is written."""
        source = tmp_path / "import.json"
        source.write_text(
            json.dumps(
                {
                    "metadata": {"version": 1},
                    "categoryLimits": [
                        {"categoryId": "audio", "categoryName": "Audio", "limit": 0}
                    ],
                }
            )
        )

        result = runner.invoke(app, ["import", str(source)])
        assert result.exit_code == 1
        assert "categoryLimits[0]" in result.stdout
        assert current().settings.list_backups() == []

    def test_import_not_json(self, runner: CliRunner, tmp_path):
        source = tmp_path / "broken.json"
        source.write_text("{not json")

        result = runner.invoke(app, ["import", str(source)])
        assert result.exit_code == 1
        assert "Not valid JSON" in result.stdout

    def test_backup(self, runner: CliRunner):
        result = runner.invoke(app, ["backup"])
        assert result.exit_code == 0
        assert "Backup" in result.stdout
        assert len(current().settings.list_backups()) == 1


class TestSweepCommand:
    """Tests for the overdue sweep command."""

    def test_nothing_to_do(self, runner: CliRunner):
        result = runner.invoke(app, ["sweep-overdue", "--no-progress"])
        assert result.exit_code == 0
        assert "Marked 0 loan(s) overdue" in result.stdout
