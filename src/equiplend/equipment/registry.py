"""Equipment lookups.

Equipment records are owned by the inventory side of the system; lending
only reads them and flips availability inside its own batches.
"""

from typing import Optional

from ..db import Collections, DocumentStore, where
from ..errors import NotFoundError
from .schemas import Equipment, EquipmentStatus


class EquipmentRegistry:
    """Reads and registers equipment."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, equipment_id: str) -> Optional[Equipment]:
        doc = self.store.get(Collections.EQUIPMENT, equipment_id)
        return Equipment.from_document(doc) if doc else None

    def require(self, equipment_id: str) -> Equipment:
        """Get an item or raise NotFoundError."""
        equipment = self.get(equipment_id)
        if equipment is None:
            raise NotFoundError("Equipment", equipment_id)
        return equipment

    def register(self, equipment: Equipment) -> Equipment:
        """Create or replace an item."""
        if not equipment.id:
            doc = self.store.add(Collections.EQUIPMENT, equipment.to_document())
            return Equipment.from_document(doc)
        self.store.put(Collections.EQUIPMENT, equipment.id, equipment.to_document())
        return equipment

    def list_equipment(
        self,
        status: Optional[EquipmentStatus] = None,
        category: Optional[str] = None,
    ) -> list[Equipment]:
        conditions = []
        if status:
            conditions.append(where("status", "==", status.value))
        if category:
            conditions.append(where("category", "==", category))
        docs = self.store.query(Collections.EQUIPMENT, conditions, order_by="name")
        return [Equipment.from_document(d) for d in docs]
