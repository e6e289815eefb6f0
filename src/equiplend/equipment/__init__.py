"""Lendable equipment."""

from .registry import EquipmentRegistry
from .schemas import Equipment, EquipmentStatus

__all__ = ["EquipmentRegistry", "Equipment", "EquipmentStatus"]
