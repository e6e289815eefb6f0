"""Discord webhook client.

Posts JSON payloads to a Discord channel webhook. Embeds are built by the
helpers at the bottom of this module.
"""

import json
import re
from datetime import datetime
from typing import Any, Optional

import requests
import structlog

from ..db.schemas import format_timestamp
from ..errors import ExternalServiceError
from .schemas import WebhookMessage

logger = structlog.get_logger("equiplend")

WEBHOOK_URL_PATTERN = re.compile(
    r"^https://(discord|discordapp)\.com/api/webhooks/\d+/[\w-]+$"
)

# Embed colours
GREEN = 0x00FF00
RED = 0xE74C3C
ORANGE = 0xF39C12


class DiscordError(ExternalServiceError):
    """Base exception for Discord webhook errors."""

    pass


class DiscordRateLimitError(DiscordError):
    """Raised when Discord rate limits the webhook."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


def validate_webhook_url(url: Optional[str]) -> Optional[str]:
    """Check a webhook URL.

    Returns:
        None if the URL is valid, otherwise an error message
    """
    if not url or not isinstance(url, str):
        return "Webhook URL is required"
    url = url.strip()
    if not url:
        return "Webhook URL cannot be empty"
    if not WEBHOOK_URL_PATTERN.match(url):
        return (
            "Invalid Discord webhook URL format. "
            "Expected format: https://discord.com/api/webhooks/{id}/{token}"
        )
    return None


class DiscordWebhookClient:
    """Client for Discord channel webhooks."""

    def __init__(self, timeout: int = 10, session: Optional[requests.Session] = None):
        """Initialize client.

        Args:
            timeout: Request timeout in seconds
            session: Optional requests session (mainly for tests)
        """
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    def send(self, url: str, message: WebhookMessage) -> None:
        """Post a message to a webhook.

        Raises:
            DiscordError: If the URL is invalid or the post fails
            DiscordRateLimitError: If Discord answers 429
        """
        error = validate_webhook_url(url)
        if error:
            raise DiscordError(error)

        try:
            response = self._session.post(
                url.strip(), data=json.dumps(message.to_payload()), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.Timeout:
            raise DiscordError("Webhook request timed out")
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 429:
                retry_after = e.response.headers.get("Retry-After")
                raise DiscordRateLimitError(
                    f"Rate limited. Retry after {retry_after} seconds",
                    retry_after=float(retry_after) if retry_after else None,
                )
            raise DiscordError(f"Discord API error: {status}")
        except requests.exceptions.RequestException as e:
            raise DiscordError(f"Webhook request failed: {e}")

        logger.debug("webhook_sent", embeds=len(message.embeds))


# ============================================================================
# Embed builders
# ============================================================================


def format_value(value: Any) -> str:
    """Render a setting value for an embed field."""
    if value is None:
        return "N/A"
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def _embed(
    title: str,
    color: int,
    fields: list[dict[str, Any]],
    now: datetime,
    footer: str,
    description: Optional[str] = None,
) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": title,
        "color": color,
        "fields": fields,
        "timestamp": format_timestamp(now),
        "footer": {"text": footer},
    }
    if description:
        embed["description"] = description
    return embed


def _field(name: str, value: Any, inline: bool = True) -> dict[str, Any]:
    return {"name": name, "value": format_value(value), "inline": inline}


def critical_setting_message(
    setting_name: str,
    admin_name: str,
    old_value: Any,
    new_value: Any,
    now: datetime,
    footer: str,
    reason: Optional[str] = None,
) -> WebhookMessage:
    fields = [
        _field("Setting", setting_name),
        _field("Changed By", admin_name or "Unknown Admin"),
        _field("Old Value", old_value),
        _field("New Value", new_value),
    ]
    if reason:
        fields.append(_field("Reason", reason, inline=False))
    return WebhookMessage(
        content="Critical system setting changed",
        embeds=[_embed("Critical Setting Changed", ORANGE, fields, now, footer)],
    )


def overdue_message(
    borrower_name: str,
    equipment_name: str,
    days_overdue: int,
    expected_return: Any,
    now: datetime,
    footer: str,
) -> WebhookMessage:
    fields = [
        _field("Borrower", borrower_name or "Unknown"),
        _field("Equipment", equipment_name or "Unknown"),
        _field("Days Overdue", days_overdue),
        _field("Expected Return Date", expected_return),
    ]
    return WebhookMessage(
        content="Overdue equipment detected",
        embeds=[_embed("Overdue Equipment Alert", RED, fields, now, footer)],
    )


def webhook_test_message(now: datetime, footer: str) -> WebhookMessage:
    return WebhookMessage(
        content="Discord webhook test successful!",
        embeds=[
            _embed(
                "Webhook Connection Test",
                GREEN,
                [],
                now,
                footer,
                description=f"This is a test message from the {footer}.",
            )
        ],
    )
