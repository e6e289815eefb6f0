"""Pydantic schemas for lendable equipment."""

from enum import Enum
from typing import Optional

from ..db.schemas import StoreModel, Timestamp


class EquipmentStatus(str, Enum):
    """Availability of an item."""

    AVAILABLE = "available"
    BORROWED = "borrowed"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"


class Equipment(StoreModel):
    """An item that can be lent out."""

    name: str
    category: str  # category id
    category_name: Optional[str] = None
    department: Optional[str] = None
    serial_number: Optional[str] = None
    status: EquipmentStatus = EquipmentStatus.AVAILABLE
    current_borrower_id: Optional[str] = None
    borrowed_at: Optional[Timestamp] = None
    returned_at: Optional[Timestamp] = None
    last_return_condition: Optional[str] = None
    last_return_notes: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.status == EquipmentStatus.AVAILABLE
