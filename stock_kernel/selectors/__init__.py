"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.inventory_selector import (
    AlertLevel,
    InventoryRow,
    InventorySelector,
    InventoryValueRow,
    LowStockAlert,
    LowStockReport,
    ProductStockSummary,
)

__all__ = [
    "AlertLevel",
    "InventoryRow",
    "InventorySelector",
    "InventoryValueRow",
    "LowStockAlert",
    "LowStockReport",
    "ProductStockSummary",
]
