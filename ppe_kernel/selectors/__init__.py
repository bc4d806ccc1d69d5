"""Selectors for the PPE kernel (read side)."""

from ppe_kernel.selectors.balance_selector import BalanceSelector
from ppe_kernel.selectors.delivery_selector import DeliverySelector
from ppe_kernel.selectors.ledger_selector import LedgerSelector

__all__ = [
    "BalanceSelector",
    "DeliverySelector",
    "LedgerSelector",
]
