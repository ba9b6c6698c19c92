"""
Module: stock_kernel.selectors.allocation_selector
Responsibility: Column-level reads of allocation rows.  Shared by the
    ledger (for before-images and error details) and by planning and
    reporting selectors.

Rows are selected as plain columns rather than ORM entities so a reader
never sees a stale identity-map copy of a row the ledger has since
changed with a Core UPDATE.
"""

from uuid import UUID

from sqlalchemy import select

from stock_kernel.domain.dtos import AllocationRow
from stock_kernel.models.stock_allocation import StockAllocation
from stock_kernel.selectors.base import BaseSelector

ROW_COLUMNS = (
    StockAllocation.id,
    StockAllocation.product_id,
    StockAllocation.warehouse_id,
    StockAllocation.allocated_quantity,
    StockAllocation.safety_stock,
    StockAllocation.version,
)


def to_allocation_row(result_row) -> AllocationRow:
    return AllocationRow(
        id=result_row.id,
        product_id=result_row.product_id,
        warehouse_id=result_row.warehouse_id,
        allocated_quantity=result_row.allocated_quantity,
        safety_stock=result_row.safety_stock,
        version=result_row.version,
    )


class AllocationSelector(BaseSelector):
    """Read access to allocation rows."""

    def get(self, product_id: UUID, warehouse_id: UUID) -> AllocationRow | None:
        result = self.session.execute(
            select(*ROW_COLUMNS).where(
                StockAllocation.product_id == product_id,
                StockAllocation.warehouse_id == warehouse_id,
            )
        ).one_or_none()
        return to_allocation_row(result) if result is not None else None

    def list_by_product(self, product_id: UUID) -> list[AllocationRow]:
        """All rows of a product, most allocated first, then by warehouse id."""
        results = self.session.execute(
            select(*ROW_COLUMNS)
            .where(StockAllocation.product_id == product_id)
            .order_by(
                StockAllocation.allocated_quantity.desc(),
                StockAllocation.warehouse_id.asc(),
            )
        ).all()
        return [to_allocation_row(r) for r in results]

    def list_by_warehouse(self, warehouse_id: UUID) -> list[AllocationRow]:
        """All rows held by a warehouse, most allocated first, then by product id."""
        results = self.session.execute(
            select(*ROW_COLUMNS)
            .where(StockAllocation.warehouse_id == warehouse_id)
            .order_by(
                StockAllocation.allocated_quantity.desc(),
                StockAllocation.product_id.asc(),
            )
        ).all()
        return [to_allocation_row(r) for r in results]
