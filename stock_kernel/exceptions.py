"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock errors reach three very different callers: the order creation service,
the bulk-order validator, and the admin transfer UI. Each of them needs to
build its own message ("only 12 units left in Lagos", "unknown SKU") and
none of them should parse message strings to do so.

Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (requested, available, breakdown, ...)

Example:
    try:
        result = fulfillment.fulfill(lines, actor_id=user_id)
    except InsufficientStockError as e:
        return {"error": e.code, "sku": e.sku,
                "requested": e.requested, "available": e.available,
                "warehouses": e.breakdown}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- CatalogError
    |   +-- ProductNotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- AmbiguousSkuError
    |   +-- DuplicateSkuError
    |
    +-- AllocationError
    |   +-- AllocationNotFoundError
    |   |   +-- NoAllocationAtSourceError
    |   +-- InvalidDeltaError
    |   +-- InvalidQuantityError
    |   +-- SafetyStockExceedsAllocationError
    |
    +-- StockRuleError
    |   +-- InsufficientStockError
    |   +-- MultiWarehouseOrderError
    |
    +-- RequestError
    |   +-- InvalidOrderLineError
    |   +-- InvalidTransferError
    |
    +-- TransferError
    |   +-- InvalidTransferTransitionError
    |   +-- TransferNotFoundError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- StorageFailureError
    |   +-- AuditEmissionError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
RETRY POLICY BY CATEGORY
===============================================================================

Category            | Retried?                 | Surfaced as
--------------------|--------------------------|------------------------------
CatalogError        | never                    | verbatim
StockRuleError      | never (business rule)    | verbatim
RequestError        | never (rejected early)   | verbatim
ConcurrencyError    | internally, bounded      | InsufficientStockError
StorageFailureError | never                    | verbatim, hard failure

ConcurrencyConflictError never escapes the fulfillment service: once the
retry budget is exhausted it is converted into InsufficientStockError.

===============================================================================
"""

from typing import Any


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Catalog exceptions


class CatalogError(StockKernelError):
    """Base exception for product/warehouse reference errors."""

    code: str = "CATALOG_ERROR"


class ProductNotFoundError(CatalogError):
    """Product could not be resolved by id or SKU."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Product not found: {reference}")


class WarehouseNotFoundError(CatalogError):
    """Warehouse with given ID was not found."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


class AmbiguousSkuError(CatalogError):
    """SKU matches products of several businesses and no business was given."""

    code: str = "AMBIGUOUS_SKU"

    def __init__(self, sku: str, business_ids: list[str]):
        self.sku = sku
        self.business_ids = business_ids
        super().__init__(
            f"SKU {sku!r} is used by {len(business_ids)} businesses; "
            "a business scope is required"
        )


class DuplicateSkuError(CatalogError):
    """SKU already exists (case-insensitively) within the business."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str, business_id: str):
        self.sku = sku
        self.business_id = business_id
        super().__init__(f"SKU {sku!r} already exists in business {business_id}")


# Allocation ledger exceptions


class AllocationError(StockKernelError):
    """Base exception for allocation-ledger errors."""

    code: str = "ALLOCATION_ERROR"


class AllocationNotFoundError(AllocationError):
    """No allocation row exists for the (product, warehouse) pair."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, product_id: str, warehouse_id: str):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        super().__init__(
            f"No allocation for product {product_id} at warehouse {warehouse_id}"
        )


class NoAllocationAtSourceError(AllocationNotFoundError):
    """Transfer source warehouse holds no allocation row for the product."""

    code: str = "NO_ALLOCATION_AT_SOURCE"


class InvalidDeltaError(AllocationError):
    """
    A ledger delta could not be applied.

    Raised when a negative delta targets a missing row, or when the atomic
    conditional update found fewer available units than the delta removes.
    """

    code: str = "INVALID_DELTA"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        delta: int,
        available: int,
        row_exists: bool = True,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.delta = delta
        self.available = available
        self.row_exists = row_exists
        reason = (
            f"only {available} available"
            if row_exists
            else "no allocation row exists"
        )
        super().__init__(
            f"Cannot apply delta {delta} to product {product_id} at "
            f"warehouse {warehouse_id}: {reason}"
        )


class InvalidQuantityError(AllocationError):
    """Quantity argument is outside its allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: int, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value}: {reason}")


class SafetyStockExceedsAllocationError(AllocationError):
    """A write would leave safety_stock above allocated_quantity."""

    code: str = "SAFETY_STOCK_EXCEEDS_ALLOCATION"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        safety_stock: int,
        allocated_quantity: int,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.safety_stock = safety_stock
        self.allocated_quantity = allocated_quantity
        super().__init__(
            f"Safety stock {safety_stock} exceeds allocated quantity "
            f"{allocated_quantity} for product {product_id} at warehouse {warehouse_id}"
        )


# Business-rule rejections


class StockRuleError(StockKernelError):
    """Base exception for stock business-rule rejections."""

    code: str = "STOCK_RULE_ERROR"


class InsufficientStockError(StockRuleError):
    """
    Not enough available stock to satisfy a request.

    ``breakdown`` lists every warehouse holding the product as dicts with
    warehouse_id, allocated_quantity, safety_stock and available_quantity.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        requested: int,
        available: int,
        sku: str | None = None,
        product_id: str | None = None,
        warehouse_id: str | None = None,
        breakdown: list[dict[str, Any]] | None = None,
    ):
        self.requested = requested
        self.available = available
        self.sku = sku
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.breakdown = breakdown or []
        subject = sku or product_id or "product"
        where = f" at warehouse {warehouse_id}" if warehouse_id else ""
        super().__init__(
            f"Insufficient stock for {subject}{where}: "
            f"requested {requested}, available {available}"
        )


class MultiWarehouseOrderError(StockRuleError):
    """Order lines would be fulfilled from more than one warehouse."""

    code: str = "MULTI_WAREHOUSE_ORDER"

    def __init__(self, warehouse_ids: list[str]):
        self.warehouse_ids = warehouse_ids
        super().__init__(
            f"Order would span {len(warehouse_ids)} warehouses: "
            + ", ".join(warehouse_ids)
        )


# Structurally invalid requests


class RequestError(StockKernelError):
    """Base exception for malformed requests rejected before storage."""

    code: str = "REQUEST_ERROR"


class InvalidOrderLineError(RequestError):
    """Order line has a blank SKU or a non-positive quantity."""

    code: str = "INVALID_ORDER_LINE"

    def __init__(self, sku: str, quantity: int, reason: str):
        self.sku = sku
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid order line {sku!r} x {quantity}: {reason}")


class InvalidTransferError(RequestError):
    """Transfer request is structurally invalid."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid transfer: {reason}")


# Transfer lifecycle


class TransferError(StockKernelError):
    """Base exception for transfer lifecycle errors."""

    code: str = "TRANSFER_ERROR"


class InvalidTransferTransitionError(TransferError):
    """Transfer status transition is not allowed by the state machine."""

    code: str = "INVALID_TRANSFER_TRANSITION"

    def __init__(self, transfer_id: str, from_status: str, to_status: str):
        self.transfer_id = transfer_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Transfer {transfer_id} cannot move from {from_status} to {to_status}"
        )


class TransferNotFoundError(TransferError):
    """Transfer record with given ID was not found."""

    code: str = "TRANSFER_NOT_FOUND"

    def __init__(self, transfer_id: str):
        self.transfer_id = transfer_id
        super().__init__(f"Transfer not found: {transfer_id}")


# Concurrency


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """A concurrent writer changed a row between planning and commit."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}{suffix}"
        )


# Infrastructure


class StorageFailureError(StockKernelError):
    """The atomic unit could not commit for infrastructure reasons."""

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class AuditEmissionError(StorageFailureError):
    """Audit fact could not be recorded; the enclosing mutation must fail."""

    code: str = "AUDIT_EMISSION_FAILED"

    def __init__(self, entity_type: str, entity_id: str, action: str, detail: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.action = action
        super().__init__(
            operation=f"audit {action} on {entity_type} {entity_id}",
            detail=detail,
        )


# Audit chain


class AuditError(StockKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


# Immutability


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
