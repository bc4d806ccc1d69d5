"""Boundary layer: transactional operations over the PPE kernel."""

from ppe_services.inventory_operations import InventoryOperations

__all__ = ["InventoryOperations"]
