"""
Availability Calculator -- pure stock arithmetic.

Every consumer (fulfillment, transfers, validation, reporting) computes
available stock through these functions so the clamp and the low-stock
rule exist in exactly one place.

Rows are duck-typed: anything exposing ``allocated_quantity`` and
``safety_stock`` works (ORM ``StockAllocation`` rows and ``AllocationRow``
DTOs alike).
"""

from collections.abc import Iterable
from typing import Protocol


class StockLevels(Protocol):
    allocated_quantity: int
    safety_stock: int


def available(row: StockLevels) -> int:
    """Units that may be committed: allocated minus safety stock, never negative."""
    return max(0, row.allocated_quantity - row.safety_stock)


def total_across_warehouses(rows: Iterable[StockLevels]) -> int:
    """Sum of allocated units across rows (safety stock included)."""
    return sum(row.allocated_quantity for row in rows)


def total_available(rows: Iterable[StockLevels]) -> int:
    return sum(available(row) for row in rows)


def is_low_stock(row: StockLevels, threshold: int) -> bool:
    return available(row) <= threshold


def is_out_of_stock(row: StockLevels) -> bool:
    return available(row) == 0


def utilization_rate(rows: Iterable[StockLevels], capacity: int) -> int:
    """
    Percentage of a warehouse's capacity taken by allocated units.

    Rounded to the nearest whole percent; 0 when capacity is unknown (<= 0).
    May exceed 100 for over-filled warehouses.
    """
    if capacity <= 0:
        return 0
    return round(total_across_warehouses(rows) / capacity * 100)
