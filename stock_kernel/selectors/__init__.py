"""Read-only selectors returning DTOs."""

from stock_kernel.selectors.allocation_planner import AllocationPlanner
from stock_kernel.selectors.allocation_selector import AllocationSelector
from stock_kernel.selectors.catalog_selector import CatalogSelector
from stock_kernel.selectors.stock_selector import StockSelector

__all__ = [
    "AllocationPlanner",
    "AllocationSelector",
    "CatalogSelector",
    "StockSelector",
]
