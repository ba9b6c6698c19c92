"""
Module: stock_kernel.selectors.stock_selector
Responsibility: Reporting reads over the allocation ledger and the
    transfer log: stock level listings, per-product availability,
    per-warehouse dashboard figures and paginated transfer history.
Architecture position: Kernel > Selectors.

All derived numbers (available, low stock, utilization) come from
domain/availability.py; nothing here re-implements the arithmetic.
"""

from uuid import UUID

from sqlalchemy import func, or_, select

from stock_kernel.domain import availability
from stock_kernel.domain.dtos import (
    ProductAvailability,
    ProductStockSummary,
    StockLevel,
    TransferPage,
    TransferRecordDTO,
    WarehouseAvailability,
    WarehouseStats,
)
from stock_kernel.domain.transfer_state import TransferStatus
from stock_kernel.models.product import Product
from stock_kernel.models.stock_allocation import StockAllocation
from stock_kernel.models.stock_transfer import StockTransfer
from stock_kernel.models.warehouse import Warehouse
from stock_kernel.selectors.allocation_selector import (
    ROW_COLUMNS,
    AllocationSelector,
    to_allocation_row,
)
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.catalog_selector import CatalogSelector

DEFAULT_LOW_STOCK_THRESHOLD = 10
MAX_PAGE_SIZE = 100


class StockSelector(BaseSelector):
    """
    Read-only stock reporting.

    ``low_stock_threshold`` is the available-units level at or below which
    a row counts as low stock (``EngineConfig.low_stock_threshold``).
    """

    def __init__(self, session, low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD):
        super().__init__(session)
        self._threshold = low_stock_threshold
        self._catalog = CatalogSelector(session)
        self._allocations = AllocationSelector(session)

    def stock_levels(
        self,
        product_id: UUID | None = None,
        warehouse_id: UUID | None = None,
        low_stock_only: bool = False,
    ) -> list[StockLevel]:
        """Allocation rows with product and warehouse names, by SKU then warehouse name."""
        stmt = (
            select(*ROW_COLUMNS, Product.sku, Product.name, Warehouse.name.label("warehouse_name"))
            .join(Product, Product.id == StockAllocation.product_id)
            .join(Warehouse, Warehouse.id == StockAllocation.warehouse_id)
            .order_by(Product.sku_key, Warehouse.name, StockAllocation.warehouse_id)
        )
        if product_id is not None:
            stmt = stmt.where(StockAllocation.product_id == product_id)
        if warehouse_id is not None:
            stmt = stmt.where(StockAllocation.warehouse_id == warehouse_id)

        levels = []
        for result in self.session.execute(stmt):
            row = to_allocation_row(result)
            low = availability.is_low_stock(row, self._threshold)
            if low_stock_only and not low:
                continue
            levels.append(
                StockLevel(
                    product_id=row.product_id,
                    sku=result.sku,
                    product_name=result.name,
                    warehouse_id=row.warehouse_id,
                    warehouse_name=result.warehouse_name,
                    allocated_quantity=row.allocated_quantity,
                    safety_stock=row.safety_stock,
                    available_quantity=row.available_quantity,
                    is_low_stock=low,
                    is_out_of_stock=availability.is_out_of_stock(row),
                )
            )
        return levels

    def product_availability(self, product_id: UUID) -> ProductAvailability:
        """
        Totals and per-warehouse breakdown for one product.

        Raises:
            ProductNotFoundError: unknown product.
        """
        product = self._catalog.require_product(product_id)
        rows = self._allocations.list_by_product(product_id)
        return ProductAvailability(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            total_allocated=availability.total_across_warehouses(rows),
            total_available=availability.total_available(rows),
            warehouses=tuple(WarehouseAvailability.from_row(r) for r in rows),
        )

    def warehouse_stats(self, warehouse_id: UUID, top_n: int = 10) -> WarehouseStats:
        """
        Dashboard figures for one warehouse.

        Raises:
            WarehouseNotFoundError: unknown warehouse.
        """
        warehouse = self._catalog.require_warehouse(warehouse_id)
        results = self.session.execute(
            select(*ROW_COLUMNS, Product.sku, Product.name)
            .join(Product, Product.id == StockAllocation.product_id)
            .where(StockAllocation.warehouse_id == warehouse_id)
            .order_by(
                StockAllocation.allocated_quantity.desc(),
                StockAllocation.product_id.asc(),
            )
        ).all()
        rows = [to_allocation_row(r) for r in results]

        top_products = tuple(
            ProductStockSummary(
                product_id=r.product_id,
                sku=r.sku,
                name=r.name,
                allocated_quantity=r.allocated_quantity,
                available_quantity=row.available_quantity,
            )
            for r, row in zip(results[:top_n], rows[:top_n])
        )

        return WarehouseStats(
            warehouse_id=warehouse.id,
            name=warehouse.name,
            region=warehouse.region,
            capacity=warehouse.capacity,
            total_products=len(rows),
            total_stock=availability.total_across_warehouses(rows),
            low_stock_items=sum(1 for r in rows if availability.is_low_stock(r, self._threshold)),
            out_of_stock_items=sum(1 for r in rows if availability.is_out_of_stock(r)),
            utilization_rate=availability.utilization_rate(rows, warehouse.capacity),
            top_products=top_products,
        )

    def get_transfer(self, transfer_id: UUID) -> TransferRecordDTO | None:
        transfer = self.session.get(StockTransfer, transfer_id)
        return TransferRecordDTO.from_model(transfer) if transfer is not None else None

    def list_transfers(
        self,
        status: TransferStatus | str | None = None,
        warehouse_id: UUID | None = None,
        product_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> TransferPage:
        """
        Transfer history, newest first.

        ``warehouse_id`` matches either end of a transfer.

        Raises:
            ValueError: page < 1, limit outside 1..100, or unknown status.
        """
        if page < 1:
            raise ValueError("page must be >= 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        conditions = []
        if status is not None:
            conditions.append(StockTransfer.status == TransferStatus(status).value)
        if warehouse_id is not None:
            conditions.append(
                or_(
                    StockTransfer.from_warehouse_id == warehouse_id,
                    StockTransfer.to_warehouse_id == warehouse_id,
                )
            )
        if product_id is not None:
            conditions.append(StockTransfer.product_id == product_id)

        total = self.session.execute(
            select(func.count()).select_from(StockTransfer).where(*conditions)
        ).scalar_one()

        transfers = self.session.scalars(
            select(StockTransfer)
            .where(*conditions)
            .order_by(StockTransfer.seq.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        return TransferPage(
            items=tuple(TransferRecordDTO.from_model(t) for t in transfers),
            page=page,
            limit=limit,
            total=total,
        )
