"""
Warehouse selection -- pure planning rules for order fulfillment.

Responsibility:
    Normalizes and aggregates order lines, and picks the allocation row a
    line will be served from.

Rules:
    - SKUs compare after ``strip()`` and ``casefold()``.
    - Repeated SKUs in one order are summed into a single line, keeping the
      position of the first occurrence.
    - A line is served by exactly one row: the eligible row
      (available >= requested) with the highest allocated quantity, ties
      broken by ascending warehouse id.  Lines are never split.
"""

from collections.abc import Iterable, Sequence
from typing import TypeVar

from stock_kernel.domain.availability import available
from stock_kernel.domain.dtos import AggregatedLine, OrderLine
from stock_kernel.exceptions import InvalidOrderLineError

RowT = TypeVar("RowT")


def normalize_sku(sku: str) -> str:
    return sku.strip().casefold()


def aggregate_lines(lines: Iterable[OrderLine]) -> tuple[AggregatedLine, ...]:
    """
    Merge lines that name the same SKU.

    Raises:
        InvalidOrderLineError: blank SKU, non-integer or non-positive quantity,
            or an empty order.
    """
    totals: dict[str, int] = {}
    spellings: dict[str, str] = {}

    for line in lines:
        sku = line.sku if isinstance(line.sku, str) else ""
        if not sku.strip():
            raise InvalidOrderLineError(str(line.sku), line.quantity, "SKU is blank")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise InvalidOrderLineError(sku, line.quantity, "quantity must be an integer")
        if line.quantity <= 0:
            raise InvalidOrderLineError(sku, line.quantity, "quantity must be positive")

        key = normalize_sku(sku)
        if key not in totals:
            totals[key] = 0
            spellings[key] = sku.strip()
        totals[key] += line.quantity

    if not totals:
        raise InvalidOrderLineError("", 0, "order has no lines")

    return tuple(
        AggregatedLine(sku=spellings[key], sku_key=key, quantity=quantity)
        for key, quantity in totals.items()
    )


def choose_row(rows: Sequence[RowT], quantity: int) -> RowT | None:
    """Return the row that should serve ``quantity`` units, or None."""
    eligible = [row for row in rows if available(row) >= quantity]
    if not eligible:
        return None
    return min(
        eligible,
        key=lambda row: (-row.allocated_quantity, str(row.warehouse_id)),
    )
