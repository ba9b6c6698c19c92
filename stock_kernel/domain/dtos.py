"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures that cross the service/selector boundary:
    ledger snapshots, fulfillment plans and results, transfer records,
    reporting views and bulk validation reports.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only from
    the service and selector layers.

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities, so callers
      cannot mutate ledger rows outside AllocationLedger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from stock_kernel.domain.availability import available
from stock_kernel.domain.transfer_state import TransferStatus

if TYPE_CHECKING:
    from stock_kernel.models.product import Product
    from stock_kernel.models.stock_allocation import StockAllocation
    from stock_kernel.models.stock_transfer import StockTransfer
    from stock_kernel.models.warehouse import Warehouse


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    business_id: UUID
    sku: str
    name: str
    unit_weight: Decimal | None

    @classmethod
    def from_model(cls, model: Product) -> ProductInfo:
        return cls(
            id=model.id,
            business_id=model.business_id,
            sku=model.sku,
            name=model.name,
            unit_weight=model.unit_weight,
        )


@dataclass(frozen=True)
class WarehouseInfo:
    id: UUID
    name: str
    region: str
    capacity: int
    is_active: bool

    @classmethod
    def from_model(cls, model: Warehouse) -> WarehouseInfo:
        return cls(
            id=model.id,
            name=model.name,
            region=model.region,
            capacity=model.capacity,
            is_active=model.is_active,
        )


# ---------------------------------------------------------------------------
# Allocation ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationRow:
    """Snapshot of one (product, warehouse) allocation row."""

    id: UUID
    product_id: UUID
    warehouse_id: UUID
    allocated_quantity: int
    safety_stock: int
    version: int

    @property
    def available_quantity(self) -> int:
        return available(self)

    @classmethod
    def from_model(cls, model: StockAllocation) -> AllocationRow:
        return cls(
            id=model.id,
            product_id=model.product_id,
            warehouse_id=model.warehouse_id,
            allocated_quantity=model.allocated_quantity,
            safety_stock=model.safety_stock,
            version=model.version,
        )

    def snapshot(self) -> dict[str, Any]:
        """Audit-payload form of the row."""
        return {
            "warehouse_id": str(self.warehouse_id),
            "allocated_quantity": self.allocated_quantity,
            "safety_stock": self.safety_stock,
            "available_quantity": self.available_quantity,
            "version": self.version,
        }


@dataclass(frozen=True)
class LedgerMutation:
    """
    Result of a single ledger write.

    ``before`` is None when the write created the row.
    """

    before: AllocationRow | None
    after: AllocationRow

    @property
    def created(self) -> bool:
        return self.before is None

    @property
    def delta(self) -> int:
        previous = self.before.allocated_quantity if self.before else 0
        return self.after.allocated_quantity - previous


@dataclass(frozen=True)
class WarehouseAvailability:
    """Per-warehouse stock figures for one product."""

    warehouse_id: UUID
    allocated_quantity: int
    safety_stock: int
    available_quantity: int

    @classmethod
    def from_row(cls, row: AllocationRow) -> WarehouseAvailability:
        return cls(
            warehouse_id=row.warehouse_id,
            allocated_quantity=row.allocated_quantity,
            safety_stock=row.safety_stock,
            available_quantity=row.available_quantity,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "warehouse_id": str(self.warehouse_id),
            "allocated_quantity": self.allocated_quantity,
            "safety_stock": self.safety_stock,
            "available_quantity": self.available_quantity,
        }


# ---------------------------------------------------------------------------
# Order fulfillment
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderLine:
    """One requested line of an order, as submitted by the caller."""

    sku: str
    quantity: int


@dataclass(frozen=True)
class AggregatedLine:
    """
    Order line after SKU aggregation.

    ``sku`` keeps the first spelling seen (stripped); ``sku_key`` is the
    normalized lookup key.
    """

    sku: str
    sku_key: str
    quantity: int


@dataclass(frozen=True)
class LineDecision:
    """Warehouse chosen for one aggregated line during planning."""

    sku: str
    product_id: UUID
    quantity: int
    warehouse_id: UUID
    allocated_quantity: int
    available_quantity: int


@dataclass(frozen=True)
class FulfillmentPlan:
    """
    Outcome of the read-only planning phase.

    ``decisions`` follow the first-seen order of the aggregated lines.
    """

    decisions: tuple[LineDecision, ...]

    @property
    def fulfillment_warehouse_id(self) -> UUID | None:
        return self.decisions[0].warehouse_id if self.decisions else None

    @property
    def warehouse_ids(self) -> tuple[UUID, ...]:
        seen: dict[UUID, None] = {}
        for decision in self.decisions:
            seen.setdefault(decision.warehouse_id, None)
        return tuple(seen)

    @property
    def spans_multiple_warehouses(self) -> bool:
        return len(self.warehouse_ids) > 1


@dataclass(frozen=True)
class LineAllocation:
    """Committed reservation for one aggregated line."""

    sku: str
    product_id: UUID
    warehouse_id: UUID
    quantity: int
    quantity_before: int
    quantity_after: int


@dataclass(frozen=True)
class FulfillmentResult:
    """What the order creation service needs after a successful reservation."""

    order_id: UUID | None
    allocations: tuple[LineAllocation, ...]
    fulfillment_warehouse_id: UUID
    spans_multiple_warehouses: bool
    attempts: int = 1

    @property
    def total_quantity(self) -> int:
        return sum(a.quantity for a in self.allocations)


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferRecordDTO:
    """Read-only view of a StockTransfer row."""

    id: UUID
    seq: int
    product_id: UUID
    from_warehouse_id: UUID
    to_warehouse_id: UUID
    quantity: int
    status: TransferStatus
    requested_by_id: UUID
    approved_by_id: UUID | None
    notes: str | None
    failure_reason: str | None
    created_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_model(cls, model: StockTransfer) -> TransferRecordDTO:
        return cls(
            id=model.id,
            seq=model.seq,
            product_id=model.product_id,
            from_warehouse_id=model.from_warehouse_id,
            to_warehouse_id=model.to_warehouse_id,
            quantity=model.quantity,
            status=TransferStatus(model.status),
            requested_by_id=model.requested_by_id,
            approved_by_id=model.approved_by_id,
            notes=model.notes,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            completed_at=model.completed_at,
        )


@dataclass(frozen=True)
class TransferResult:
    """A completed transfer plus post-transfer availability at both ends."""

    transfer: TransferRecordDTO
    source_available: int
    destination_available: int


@dataclass(frozen=True)
class TransferPage:
    """One page of transfer records, newest first."""

    items: tuple[TransferRecordDTO, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockLevel:
    """Allocation row joined with product and warehouse names."""

    product_id: UUID
    sku: str
    product_name: str
    warehouse_id: UUID
    warehouse_name: str
    allocated_quantity: int
    safety_stock: int
    available_quantity: int
    is_low_stock: bool
    is_out_of_stock: bool


@dataclass(frozen=True)
class ProductAvailability:
    """Totals and per-warehouse breakdown for one product."""

    product_id: UUID
    sku: str
    name: str
    total_allocated: int
    total_available: int
    warehouses: tuple[WarehouseAvailability, ...]


@dataclass(frozen=True)
class ProductStockSummary:
    product_id: UUID
    sku: str
    name: str
    allocated_quantity: int
    available_quantity: int


@dataclass(frozen=True)
class WarehouseStats:
    """Dashboard figures for one warehouse."""

    warehouse_id: UUID
    name: str
    region: str
    capacity: int
    total_products: int
    total_stock: int
    low_stock_items: int
    out_of_stock_items: int
    utilization_rate: int
    top_products: tuple[ProductStockSummary, ...]


# ---------------------------------------------------------------------------
# Bulk order validation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderRequest:
    """An order submitted for validation; ``order_ref`` is caller-defined."""

    order_ref: str
    lines: tuple[OrderLine, ...]
    business_id: UUID | None = None


@dataclass(frozen=True)
class LineIssue:
    """One problem found with one line of an order."""

    sku: str
    code: str
    message: str
    requested: int | None = None
    available: int | None = None
    breakdown: tuple[WarehouseAvailability, ...] = ()


@dataclass(frozen=True)
class OrderValidation:
    order_ref: str
    issues: tuple[LineIssue, ...]
    plan: FulfillmentPlan | None = None

    @property
    def is_valid(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class BulkValidationReport:
    """Per-order validation outcome, in submission order."""

    orders: tuple[OrderValidation, ...]

    @property
    def valid_count(self) -> int:
        return sum(1 for o in self.orders if o.is_valid)

    @property
    def invalid_count(self) -> int:
        return len(self.orders) - self.valid_count

    @property
    def all_valid(self) -> bool:
        return self.invalid_count == 0


# ---------------------------------------------------------------------------
# Bulk allocation upsert
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationItem:
    """Absolute levels to write for one (product, warehouse) pair."""

    product_id: UUID
    warehouse_id: UUID
    allocated_quantity: int
    safety_stock: int = 0


@dataclass(frozen=True)
class AllocationItemError:
    index: int
    product_id: UUID
    warehouse_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class BulkAllocationResult:
    applied: tuple[AllocationRow, ...] = field(default_factory=tuple)
    errors: tuple[AllocationItemError, ...] = field(default_factory=tuple)

    @property
    def success_count(self) -> int:
        return len(self.applied)

    @property
    def error_count(self) -> int:
        return len(self.errors)
