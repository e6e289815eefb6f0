"""Category borrow limits."""

from .enforcer import CategoryLimitCheck, CategoryLimitEnforcer

__all__ = ["CategoryLimitCheck", "CategoryLimitEnforcer"]
