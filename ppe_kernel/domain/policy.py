"""
StockPolicy -- the runtime switches an operation runs under.

A fresh snapshot is resolved at the start of every operation by the boundary
layer (file defaults overlaid with runtime_settings rows) and passed
explicitly into kernel services.  The kernel never reads configuration on
its own.
"""

from dataclasses import dataclass

DEFAULT_RETURN_CANCELLATION_WINDOW_HOURS = 72
DEFAULT_DELIVERY_CANCELLATION_WINDOW_HOURS = 24


@dataclass(frozen=True)
class StockPolicy:
    allow_negative_stock: bool = False
    allow_forced_adjustments: bool = False
    return_cancellation_window_hours: int = DEFAULT_RETURN_CANCELLATION_WINDOW_HOURS
    delivery_cancellation_window_hours: int = DEFAULT_DELIVERY_CANCELLATION_WINDOW_HOURS

    def __post_init__(self) -> None:
        if self.return_cancellation_window_hours < 0:
            raise ValueError("return_cancellation_window_hours must be >= 0")
        if self.delivery_cancellation_window_hours < 0:
            raise ValueError("delivery_cancellation_window_hours must be >= 0")
