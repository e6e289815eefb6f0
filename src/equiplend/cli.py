"""Command-line interface for equiplend.

Built with Typer for commands and Rich for output.
"""

import json
from datetime import date
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .audit import AuditLogFilter
from .config import configure_logging, get_config
from .errors import EquipLendError, ValidationError
from .services import Services, build_services
from .settings import SettingKey

# Create the main app
app = typer.Typer(
    name="equiplend",
    help="Equipment lending: loans, overdue tracking and policy settings.",
    no_args_is_help=True,
)

# Create sub-apps for command groups
settings_app = typer.Typer(help="Show and change system settings.")
app.add_typer(settings_app, name="settings")

closed_dates_app = typer.Typer(help="Manage closed dates.")
app.add_typer(closed_dates_app, name="closed-dates")

limits_app = typer.Typer(help="Manage per-category borrow limits.")
app.add_typer(limits_app, name="limits")

# Rich console for pretty output
console = Console()

AdminIdOption = typer.Option("cli", "--admin-id", help="Acting administrator ID")
AdminNameOption = typer.Option("CLI", "--admin-name", help="Acting administrator name")


# ============================================================================
# Helper Functions
# ============================================================================


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[bold green]Success:[/bold green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")


def get_services() -> Services:
    return build_services(get_config())


def fail(error: EquipLendError) -> None:
    """Report a domain error and exit non-zero."""
    print_error(str(error))
    if isinstance(error, ValidationError) and error.errors != [str(error)]:
        for item in error.errors:
            console.print(f"  [dim]- {item}[/dim]")
    raise typer.Exit(1)


def parse_value(raw: str) -> Any:
    """Interpret a command-line value as JSON, falling back to the raw string.

    ``14`` becomes an int, ``true`` a bool, ``null`` None and ``09:00`` stays text.
    """
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@app.callback()
def setup() -> None:
    """Equipment lending administration."""
    configure_logging(get_config().log_level)


# ============================================================================
# Overdue
# ============================================================================


@app.command("sweep-overdue")
def sweep_overdue(
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show a progress bar"),
) -> None:
    """Mark borrowed loans past their return date as overdue."""
    services = get_services()
    result = services.overdue.sweep(show_progress=progress)

    print_success(f"Marked {result.marked} loan(s) overdue")
    console.print(f"  Notifications sent: {result.notifications_sent}")
    if result.skipped:
        console.print(f"  [dim]Skipped (changed meanwhile): {result.skipped}[/dim]")
    for request_id, message in result.errors:
        print_warning(f"{request_id}: {message}")
    if result.errors:
        raise typer.Exit(1)


# ============================================================================
# Settings
# ============================================================================


@settings_app.command("show")
def settings_show(
    sensitive: bool = typer.Option(False, "--sensitive", help="Show the webhook URL"),
) -> None:
    """Show the current system settings."""
    settings = get_services().settings.get_settings()

    table = Table(title="System Settings", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key in SettingKey:
        value = settings.value_of(key.value)
        if key == SettingKey.DISCORD_WEBHOOK_URL and value and not sensitive:
            value = "(hidden)"
        table.add_row(key.value, "-" if value is None else str(value))

    console.print(table)
    updated = settings.last_updated.isoformat() if settings.last_updated else "never"
    console.print(f"[dim]Version {settings.version}, updated {updated} by {settings.last_updated_by}[/dim]")


@settings_app.command("set")
def settings_set(
    key: str = typer.Argument(..., help="Setting key, e.g. maxLoanDuration"),
    value: str = typer.Argument(..., help="New value (JSON literals are parsed)"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Why it changed"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Change one setting."""
    services = get_services()
    try:
        services.settings.update_setting(
            key, parse_value(value), admin_id, admin_name, reason=reason
        )
    except EquipLendError as e:
        fail(e)
    print_success(f"{key} updated")


# ============================================================================
# Closed Dates
# ============================================================================


@closed_dates_app.command("list")
def closed_dates_list() -> None:
    """List closed dates."""
    closed = get_services().calendar.list_closed_dates()
    if not closed:
        console.print("[dim]No closed dates.[/dim]")
        return

    table = Table(title="Closed Dates", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Date", style="cyan")
    table.add_column("Reason")
    table.add_column("Repeats", justify="center")

    for cd in closed:
        table.add_row(
            cd.id or "-",
            cd.date.isoformat(),
            cd.reason,
            cd.recurring_pattern.value if cd.recurring_pattern else "-",
        )
    console.print(table)


@closed_dates_app.command("add")
def closed_dates_add(
    day: str = typer.Argument(..., help="Date (YYYY-MM-DD)"),
    reason: str = typer.Argument(..., help="Why the day is closed"),
    yearly: bool = typer.Option(False, "--yearly", "-y", help="Repeat every year"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Add a closed date."""
    try:
        parsed = date.fromisoformat(day)
    except ValueError:
        print_error(f"Invalid date: {day}. Use YYYY-MM-DD")
        raise typer.Exit(1)

    services = get_services()
    try:
        closed = services.calendar.add_closed_date(
            parsed, reason, admin_id, admin_name, is_recurring=yearly
        )
    except EquipLendError as e:
        fail(e)
    print_success(f"Closed {closed.date.isoformat()} ({closed.id})")


@closed_dates_app.command("remove")
def closed_dates_remove(
    closed_date_id: str = typer.Argument(..., help="Closed date ID"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Remove a closed date."""
    services = get_services()
    try:
        services.calendar.remove_closed_date(closed_date_id, admin_id, admin_name)
    except EquipLendError as e:
        fail(e)
    print_success(f"Removed closed date {closed_date_id}")


# ============================================================================
# Category Limits
# ============================================================================


@limits_app.command("list")
def limits_list() -> None:
    """List explicit category limits."""
    services = get_services()
    limits = services.settings.get_all_category_limits()
    default = services.settings.get_settings().default_category_limit

    table = Table(title="Category Limits", show_header=True, header_style="bold magenta")
    table.add_column("Category ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Limit", justify="right")

    for cl in limits:
        table.add_row(cl.category_id, cl.category_name, str(cl.limit) if cl.limit else "disabled")
    console.print(table)
    console.print(f"[dim]Categories without an entry allow {default} item(s).[/dim]")


@limits_app.command("set")
def limits_set(
    category_id: str = typer.Argument(..., help="Category ID"),
    limit: int = typer.Argument(..., help="Items a user may hold at once (0 disables)"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Category display name"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Set the limit for a category."""
    services = get_services()
    try:
        services.settings.set_category_limit(
            category_id, name or category_id, limit, admin_id, admin_name
        )
    except EquipLendError as e:
        fail(e)
    print_success(f"Limit for {category_id} set to {limit}")


@limits_app.command("check")
def limits_check(
    user_id: str = typer.Argument(..., help="User ID"),
    category_id: str = typer.Argument(..., help="Category ID"),
) -> None:
    """Check whether a user may borrow another item of a category."""
    check = get_services().enforcer.check(user_id, category_id)
    limit = "-" if check.limit is None else check.limit
    if check.allowed:
        print_success(f"Allowed ({check.current_count} of {limit} borrowed)")
    else:
        print_warning(check.message or "Not allowed")
        raise typer.Exit(1)


# ============================================================================
# Audit / Export / Import / Backup
# ============================================================================


@app.command()
def audit(
    admin: Optional[str] = typer.Option(None, "--admin", "-a", help="Filter by admin ID"),
    setting_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by setting type"),
    limit: int = typer.Option(50, "--limit", "-l", help="Max entries"),
) -> None:
    """Show the settings audit log, newest first."""
    filters = AuditLogFilter(admin_id=admin, setting_type=setting_type, limit=limit)
    entries = get_services().settings.get_audit_log(filters)
    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return

    table = Table(title="Audit Log", show_header=True, header_style="bold magenta")
    table.add_column("When", style="dim")
    table.add_column("Admin", style="cyan")
    table.add_column("Action", style="yellow")
    table.add_column("Path")
    table.add_column("Old")
    table.add_column("New")

    for entry in entries:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            entry.admin_name,
            entry.action.value,
            entry.setting_path,
            _short(entry.old_value),
            _short(entry.new_value),
        )
    console.print(table)


def _short(value: Any, width: int = 30) -> str:
    if value is None:
        return "-"
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text if len(text) <= width else text[: width - 1] + "…"


@app.command()
def export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file instead of stdout"),
    sensitive: bool = typer.Option(False, "--sensitive", help="Include the webhook URL"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Export settings, closed dates and category limits as JSON."""
    data = get_services().settings.export_settings(sensitive, admin_id, admin_name)
    text = json.dumps(data, indent=2)
    if output is None:
        console.print_json(text)
        return
    output.write_text(text, encoding="utf-8")
    print_success(
        f"Exported {len(data['closedDates'])} closed dates and "
        f"{len(data['categoryLimits'])} category limits to {output}"
    )


@app.command("import")
def import_(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Export file to apply"),
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Apply a settings export. A backup is taken first."""
    try:
        data = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print_error(f"Not valid JSON: {e}")
        raise typer.Exit(1)

    try:
        result = get_services().settings.import_settings(data, admin_id, admin_name)
    except EquipLendError as e:
        fail(e)

    stats = result.stats
    console.print(
        Panel(
            f"Settings updated: {stats.settings_updated}\n"
            f"Closed dates added: {stats.closed_dates_added} "
            f"(skipped {stats.closed_dates_skipped})\n"
            f"Category limits updated: {stats.category_limits_updated}\n"
            f"Backup: {result.backup.id}",
            title="Import complete",
            border_style="green",
        )
    )
    for error in stats.errors:
        print_warning(error)


@app.command()
def backup(
    admin_id: str = AdminIdOption,
    admin_name: str = AdminNameOption,
) -> None:
    """Store a full backup of the current settings."""
    saved = get_services().settings.create_backup(admin_id, admin_name)
    print_success(f"Backup {saved.id} created")


# ============================================================================
# Version Command
# ============================================================================


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__

    console.print(f"equiplend version {__version__}")


# ============================================================================
# Main Entry Point
# ============================================================================


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
