"""
StockAdminService -- catalog and allocation administration.

Responsibility:
    The write side of the admin UI: registering products and warehouses,
    receiving stock, and setting allocation levels directly (stock counts
    and bulk uploads).  Every write is audited in the same transaction.

Architecture position:
    Kernel > Services -- entry point.  Owns its transaction when
    ``auto_commit=True``.

Invariants enforced:
    - SKUs are unique per business, compared case-insensitively.
    - Allocation rows change only through AllocationLedger.
    - A bulk upload applies every valid item and reports the rest; one bad
      item never rolls back the others.

Failure modes:
    - DuplicateSkuError, ProductNotFoundError, WarehouseNotFoundError
    - InvalidQuantityError, SafetyStockExceedsAllocationError,
      AllocationNotFoundError
    - StorageFailureError / AuditEmissionError
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    AllocationItem,
    AllocationItemError,
    AllocationRow,
    BulkAllocationResult,
    LedgerMutation,
    ProductInfo,
    WarehouseInfo,
)
from stock_kernel.domain.selection import normalize_sku
from stock_kernel.exceptions import (
    DuplicateSkuError,
    InvalidQuantityError,
    ProductNotFoundError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.product import Product
from stock_kernel.models.warehouse import Warehouse
from stock_kernel.selectors.catalog_selector import CatalogSelector
from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.base import BaseService

logger = get_logger("services.stock_admin")


class StockAdminService(BaseService):
    """
    Administrative writes for products, warehouses and allocation rows.

    Contract:
        Each public method is one transaction: the write and its audit
        event are committed together (``auto_commit=True``) or rolled back
        together.

    Non-goals:
        - Does NOT authorize the actor; the caller has done that.
        - Does NOT delete products, warehouses or allocation rows.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, auto_commit)
        self._clock = clock or SystemClock()
        self._ledger = AllocationLedger(session, self._clock)
        self._catalog = CatalogSelector(session)
        self._auditor = auditor or AuditorService(session, self._clock)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        try:
            yield
            self._commit()
        except StockKernelError as exc:
            self._rollback()
            logger.warning(
                "admin_operation_rejected",
                extra={"operation": operation, "error_code": exc.code},
            )
            raise
        except DBAPIError as exc:
            self._rollback()
            logger.error("admin_operation_failed", extra={"operation": operation}, exc_info=True)
            raise self._storage_failure(operation, exc) from exc

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register_product(
        self,
        business_id: UUID,
        sku: str,
        name: str,
        actor_id: UUID,
        unit_weight: Decimal | None = None,
    ) -> ProductInfo:
        """
        Add a product to a business's catalog.

        Raises:
            ValueError: blank SKU or name.
            DuplicateSkuError: the business already has the SKU (any case).
        """
        sku = (sku or "").strip()
        if not sku:
            raise ValueError("sku must not be blank")
        if not name or not name.strip():
            raise ValueError("name must not be blank")

        with self._transaction("register_product"):
            if self._catalog.find_products_by_sku(sku, business_id):
                raise DuplicateSkuError(sku, str(business_id))

            product = Product(
                business_id=business_id,
                sku=sku,
                sku_key=normalize_sku(sku),
                name=name.strip(),
                unit_weight=unit_weight,
                created_by_id=actor_id,
            )
            try:
                with self.session.begin_nested():
                    self.session.add(product)
                    self.session.flush()
            except IntegrityError as exc:
                raise DuplicateSkuError(sku, str(business_id)) from exc

            self._auditor.emit(
                entity_type="Product",
                entity_id=product.id,
                action=AuditAction.PRODUCT_REGISTERED,
                details={
                    "business_id": business_id,
                    "sku": product.sku,
                    "name": product.name,
                    "unit_weight": unit_weight,
                },
                actor_id=actor_id,
            )
            info = ProductInfo.from_model(product)

        logger.info(
            "product_registered",
            extra={"product_id": str(info.id), "sku": info.sku, "business_id": str(business_id)},
        )
        return info

    def update_product_metadata(
        self,
        product_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        unit_weight: Decimal | None = None,
    ) -> ProductInfo:
        """Change a product's display name and/or unit weight; SKU is not editable here."""
        with self._transaction("update_product_metadata"):
            product = self.session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(str(product_id))

            changes = {}
            if name is not None:
                if not name.strip():
                    raise ValueError("name must not be blank")
                changes["name"] = {"before": product.name, "after": name.strip()}
                product.name = name.strip()
            if unit_weight is not None:
                changes["unit_weight"] = {"before": product.unit_weight, "after": unit_weight}
                product.unit_weight = unit_weight

            if changes:
                product.updated_by_id = actor_id
                product.updated_at = self._clock.now()
                self.session.flush()
                self._auditor.emit(
                    entity_type="Product",
                    entity_id=product.id,
                    action=AuditAction.PRODUCT_UPDATED,
                    details={"changes": changes},
                    actor_id=actor_id,
                )
            info = ProductInfo.from_model(product)

        return info

    def register_warehouse(
        self,
        name: str,
        region: str,
        capacity: int,
        actor_id: UUID,
    ) -> WarehouseInfo:
        if not name or not name.strip():
            raise ValueError("name must not be blank")
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 0:
            raise InvalidQuantityError("capacity", capacity, "must be a non-negative integer")

        with self._transaction("register_warehouse"):
            warehouse = Warehouse(
                name=name.strip(),
                region=region or "",
                capacity=capacity,
                is_active=True,
                created_by_id=actor_id,
            )
            self.session.add(warehouse)
            self.session.flush()
            self._auditor.emit(
                entity_type="Warehouse",
                entity_id=warehouse.id,
                action=AuditAction.WAREHOUSE_REGISTERED,
                details={"name": warehouse.name, "region": warehouse.region, "capacity": capacity},
                actor_id=actor_id,
            )
            info = WarehouseInfo.from_model(warehouse)

        logger.info("warehouse_registered", extra={"warehouse_id": str(info.id), "region": info.region})
        return info

    # ------------------------------------------------------------------
    # Allocation rows
    # ------------------------------------------------------------------

    def _require_pair(self, product_id: UUID, warehouse_id: UUID) -> None:
        self._catalog.require_product(product_id)
        self._catalog.require_warehouse(warehouse_id)

    def _audit_allocation(
        self,
        action: AuditAction,
        mutation: LedgerMutation,
        actor_id: UUID,
        **details,
    ) -> None:
        self._auditor.emit(
            entity_type="StockAllocation",
            entity_id=mutation.after.id,
            action=action,
            details={
                "product_id": mutation.after.product_id,
                "before": mutation.before.snapshot() if mutation.before is not None else None,
                "after": mutation.after.snapshot(),
                **details,
            },
            actor_id=actor_id,
        )

    def receive_stock(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        quantity: int,
        actor_id: UUID,
        reference: str | None = None,
    ) -> AllocationRow:
        """Add received units to a warehouse, creating the row if needed."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError("quantity", quantity, "must be a positive integer")

        with LogContext.bind(actor_id=str(actor_id), product_id=str(product_id)):
            with self._transaction("receive_stock"):
                self._require_pair(product_id, warehouse_id)
                mutation = self._ledger.upsert_add(product_id, warehouse_id, quantity)
                self._audit_allocation(
                    AuditAction.STOCK_RECEIVED,
                    mutation,
                    actor_id,
                    quantity=quantity,
                    reference=reference,
                )

            logger.info(
                "stock_received",
                extra={
                    "warehouse_id": str(warehouse_id),
                    "quantity": quantity,
                    "allocated_after": mutation.after.allocated_quantity,
                },
            )
        return mutation.after

    def set_safety_stock(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        safety_stock: int,
        actor_id: UUID,
    ) -> AllocationRow:
        with self._transaction("set_safety_stock"):
            mutation = self._ledger.set_safety_stock(product_id, warehouse_id, safety_stock)
            self._audit_allocation(AuditAction.SAFETY_STOCK_CHANGED, mutation, actor_id)
        return mutation.after

    def set_allocation(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        allocated: int,
        safety: int,
        actor_id: UUID,
    ) -> AllocationRow:
        """Overwrite both quantities of a pair (e.g. after a physical count)."""
        with self._transaction("set_allocation"):
            self._require_pair(product_id, warehouse_id)
            mutation = self._ledger.set_levels(product_id, warehouse_id, allocated, safety)
            self._audit_allocation(AuditAction.ALLOCATION_SET, mutation, actor_id)
        return mutation.after

    def bulk_set_allocations(
        self,
        items: Iterable[AllocationItem],
        actor_id: UUID,
    ) -> BulkAllocationResult:
        """
        Apply many absolute allocation writes, each in its own savepoint.

        Items that fail validation are reported with their index and error
        code; the others are applied and committed.

        Existing target rows are locked before the first audit event takes
        the audit sequence lock, so an order reserving one of them cannot
        end up waiting in a cycle with this upload.
        """
        items = tuple(items)
        applied: list[AllocationRow] = []
        errors: list[AllocationItemError] = []

        with self._transaction("bulk_set_allocations"):
            self._ledger.lock_rows((item.product_id, item.warehouse_id) for item in items)
            for index, item in enumerate(items):
                try:
                    with self.session.begin_nested():
                        self._require_pair(item.product_id, item.warehouse_id)
                        mutation = self._ledger.set_levels(
                            item.product_id,
                            item.warehouse_id,
                            item.allocated_quantity,
                            item.safety_stock,
                        )
                        self._audit_allocation(
                            AuditAction.ALLOCATION_SET, mutation, actor_id, bulk_index=index
                        )
                except StockKernelError as exc:
                    errors.append(
                        AllocationItemError(
                            index=index,
                            product_id=item.product_id,
                            warehouse_id=item.warehouse_id,
                            code=exc.code,
                            message=str(exc),
                        )
                    )
                else:
                    applied.append(mutation.after)

        result = BulkAllocationResult(applied=tuple(applied), errors=tuple(errors))
        logger.info(
            "bulk_allocations_applied",
            extra={"success_count": result.success_count, "error_count": result.error_count},
        )
        return result
