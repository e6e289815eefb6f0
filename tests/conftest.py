"""Pytest configuration and shared fixtures.

This module provides fixtures for testing equiplend, including an in-memory
store, a fixed clock, a recording notification dispatcher and seeded users
and equipment.
"""

import os
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional

import pytest

from equiplend.clock import FixedClock
from equiplend.config import Config, reset_config
from equiplend.db import Database, reset_db
from equiplend.equipment import Equipment
from equiplend.errors import ExternalServiceError
from equiplend.loans import LoanRequest
from equiplend.notifications import (
    NotificationDispatcher,
    NotificationPriority,
    NotificationType,
    WebhookMessage,
)
from equiplend.services import Services, build_services
from equiplend.users import UserProfile, UserRole, UserStatus


# ============================================================================
# Fakes
# ============================================================================


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every delivery in memory. Can be told to fail for some users."""

    def __init__(self) -> None:
        self.notifications: list[dict[str, Any]] = []
        self.webhooks: list[tuple[WebhookMessage, Optional[str]]] = []
        self.failing_users: set[str] = set()
        self.fail_webhook = False

    def notify_user(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
    ) -> None:
        if user_id in self.failing_users:
            raise ExternalServiceError(f"delivery to {user_id} failed")
        self.notifications.append(
            {
                "user_id": user_id,
                "type": type,
                "title": title,
                "message": message,
                "data": data or {},
                "priority": priority,
            }
        )

    def send_webhook(self, message: WebhookMessage, url: Optional[str] = None) -> bool:
        self.webhooks.append((message, url))
        if self.fail_webhook:
            raise ExternalServiceError("webhook down")
        return url is not None

    def sent_to(self, user_id: str, type: Optional[NotificationType] = None) -> list[dict]:
        return [
            n
            for n in self.notifications
            if n["user_id"] == user_id and (type is None or n["type"] == type)
        ]

    def of_type(self, type: NotificationType) -> list[dict]:
        return [n for n in self.notifications if n["type"] == type]

    @property
    def delivered_webhooks(self) -> list[WebhookMessage]:
        return [message for message, url in self.webhooks if url]

    def clear(self) -> None:
        self.notifications.clear()
        self.webhooks.clear()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="function")
def db() -> Generator[Database, None, None]:
    """Create an in-memory test database."""
    reset_db()
    reset_config()

    database = Database(":memory:", retry_attempts=3, retry_base_delay=0, sleep=lambda _: None)
    database.create_tables()
    yield database

    reset_db()


@pytest.fixture
def clock() -> FixedClock:
    """Monday 2024-01-08, 09:00 UTC."""
    return FixedClock(datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def webhook_url() -> str:
    return "https://discord.com/api/webhooks/123456789/abc-DEF_123"


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def config() -> Config:
    return Config(
        db_path=Path(":memory:"),
        log_level="INFO",
        retry_max=3,
        retry_base_delay=0.0,
        webhook_timeout=5,
        org_name="Test Lending Office",
    )


@pytest.fixture
def services(
    db: Database, clock: FixedClock, dispatcher: RecordingDispatcher, config: Config
) -> Services:
    """The full service graph over the test database, with users and equipment seeded."""
    svc = build_services(config, store=db, clock=clock, dispatcher=dispatcher)
    _seed_users(svc)
    _seed_equipment(svc)
    return svc


def _seed_users(svc: Services) -> None:
    profiles = [
        UserProfile(id="admin-1", display_name="Ada Admin", role=UserRole.ADMIN),
        UserProfile(id="admin-2", display_name="Bo Admin", role=UserRole.ADMIN),
        UserProfile(
            id="admin-off",
            display_name="Suspended Admin",
            role=UserRole.ADMIN,
            status=UserStatus.SUSPENDED,
        ),
        UserProfile(id="staff-1", display_name="Sam Staff", role=UserRole.STAFF),
        UserProfile(
            id="user-1",
            display_name="Uma User",
            email="uma@example.org",
            department="Film",
        ),
        UserProfile(id="user-2", display_name="Vic User"),
        UserProfile(id="user-pending", display_name="New User", status=UserStatus.PENDING),
    ]
    for profile in profiles:
        svc.directory.save(profile)


def _seed_equipment(svc: Services) -> None:
    items = [
        Equipment(id="camera-1", name="Canon EOS R5", category="cameras", category_name="Cameras"),
        Equipment(id="camera-2", name="Sony A7 IV", category="cameras", category_name="Cameras"),
        Equipment(id="camera-3", name="Nikon Z6", category="cameras", category_name="Cameras"),
        Equipment(id="camera-4", name="Fuji X-T5", category="cameras", category_name="Cameras"),
        Equipment(
            id="tripod-1",
            name="Manfrotto 055",
            category="tripods",
            category_name="Tripods",
            serial_number="MF-055-01",
        ),
    ]
    for item in items:
        svc.equipment.register(item)


# ============================================================================
# Loan Helpers
# ============================================================================


def loan_payload(
    equipment_id: str = "camera-1",
    borrow: Optional[date] = None,
    due: Optional[date] = None,
    purpose: str = "Documentary shoot",
) -> dict[str, Any]:
    borrow = borrow or date(2024, 1, 9)
    due = due or date(2024, 1, 12)
    return {
        "equipmentId": equipment_id,
        "borrowDate": borrow.isoformat(),
        "expectedReturnDate": due.isoformat(),
        "purpose": purpose,
    }


@pytest.fixture
def payload():
    """Builder for loan request payloads."""
    return loan_payload


@pytest.fixture
def borrow(services: Services):
    """Take a loan through create, approve and pickup. Returns the borrowed request."""

    def _borrow(
        equipment_id: str = "camera-1",
        user_id: str = "user-1",
        due: Optional[date] = None,
    ) -> LoanRequest:
        created = services.loans.create(
            loan_payload(equipment_id, due=due), user_id
        ).request
        services.loans.approve(created.id, "staff-1")
        return services.loans.mark_picked_up(created.id, "staff-1").request

    return _borrow


# ============================================================================
# CLI Testing Fixtures
# ============================================================================


@pytest.fixture
def cli_env(temp_db_path: Path) -> Generator[Path, None, None]:
    """Point the CLI at a throwaway database file."""
    reset_db()
    reset_config()
    os.environ["EQUIPLEND_DB_PATH"] = str(temp_db_path)
    os.environ["EQUIPLEND_RETRY_BASE_DELAY"] = "0"

    yield temp_db_path

    reset_db()
    reset_config()
    for key in ("EQUIPLEND_DB_PATH", "EQUIPLEND_RETRY_BASE_DELAY"):
        os.environ.pop(key, None)


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner
    return CliRunner()
