"""Per-category borrow caps."""

from typing import Optional

import structlog
from pydantic import BaseModel

from ..db import Collections, DocumentStore, where
from ..settings import SettingsGovernanceService

logger = structlog.get_logger("equiplend")

BORROWED = "borrowed"


class CategoryLimitCheck(BaseModel):
    """Outcome of a category limit check."""

    allowed: bool
    current_count: int
    limit: Optional[int]
    message: str


class CategoryLimitEnforcer:
    """Decides whether a user may hold another item of a category."""

    def __init__(self, store: DocumentStore, settings: SettingsGovernanceService):
        self.store = store
        self.settings = settings

    def get_effective_limit(self, category_id: str) -> int:
        """Explicit category limit, else the system default."""
        explicit = self.settings.get_category_limit(category_id)
        if explicit is not None:
            return explicit
        return self.settings.get_settings().default_category_limit

    def count_borrowed(self, user_id: str, category_id: str) -> int:
        """Items of a category the user currently has out."""
        return self.store.count(
            Collections.LOAN_REQUESTS,
            [
                where("userId", "==", user_id),
                where("status", "==", BORROWED),
                where("equipmentSnapshot.category", "==", category_id),
            ],
        )

    def check(self, user_id: str, category_id: str) -> CategoryLimitCheck:
        """Check whether ``user_id`` may borrow one more ``category_id`` item.

        Errors reading the store never block borrowing: the check then
        allows and reports the error in ``message``.
        """
        try:
            limit = self.get_effective_limit(category_id)
            if limit == 0:
                return CategoryLimitCheck(
                    allowed=False,
                    current_count=0,
                    limit=0,
                    message="Borrowing is disabled for this category",
                )

            count = self.count_borrowed(user_id, category_id)
            if count >= limit:
                return CategoryLimitCheck(
                    allowed=False,
                    current_count=count,
                    limit=limit,
                    message=(
                        f"Category limit reached: {count} of {limit} items already borrowed"
                    ),
                )
            return CategoryLimitCheck(
                allowed=True,
                current_count=count,
                limit=limit,
                message=f"{count} of {limit} items borrowed",
            )
        except Exception as e:
            logger.warning(
                "category_limit_check_failed",
                user_id=user_id,
                category_id=category_id,
                error=str(e),
            )
            return CategoryLimitCheck(
                allowed=True,
                current_count=0,
                limit=None,
                message=f"Category limit check failed, allowing: {e}",
            )
