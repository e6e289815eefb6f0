"""Configuration management for equiplend.

Loads configuration from environment variables and provides defaults.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
from dotenv import load_dotenv

# Load .env file if present
load_dotenv()


@dataclass
class Config:
    """Application configuration."""

    # Database
    db_path: Path

    # Logging
    log_level: str

    # Store retries
    retry_max: int
    retry_base_delay: float  # seconds

    # Webhooks
    webhook_timeout: int  # seconds

    # Shown in webhook footers and exports
    org_name: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_path_str = os.environ.get(
            "EQUIPLEND_DB_PATH",
            str(Path.home() / ".equiplend" / "equiplend.db"),
        )
        db_path = Path(db_path_str).expanduser()

        return cls(
            db_path=db_path,
            log_level=os.environ.get("EQUIPLEND_LOG_LEVEL", "INFO").upper(),
            retry_max=int(os.environ.get("EQUIPLEND_RETRY_MAX", "3")),
            retry_base_delay=float(
                os.environ.get("EQUIPLEND_RETRY_BASE_DELAY", "1.0")
            ),
            webhook_timeout=int(os.environ.get("EQUIPLEND_WEBHOOK_TIMEOUT", "10")),
            org_name=os.environ.get("EQUIPLEND_ORG_NAME", "Equipment Lending System"),
        )

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.retry_max < 1:
            errors.append("EQUIPLEND_RETRY_MAX must be at least 1")
        if self.retry_base_delay < 0:
            errors.append("EQUIPLEND_RETRY_BASE_DELAY cannot be negative")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown log level: {self.log_level}")

        # Check database directory is writable
        if str(self.db_path) != ":memory:" and not self.db_path.parent.exists():
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                errors.append(f"Cannot create database directory: {self.db_path.parent}")

        return errors


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for console output at the given level."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=False,
    )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reset_config() -> None:
    """Reset the global config instance. Used for testing."""
    global _config
    _config = None
