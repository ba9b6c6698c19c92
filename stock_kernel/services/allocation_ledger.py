"""
AllocationLedger -- the only writer of stock allocation rows.

Responsibility:
    Reads and atomically adjusts per-(product, warehouse) allocation rows.
    Every quantity write is ONE conditional statement; the service never
    reads a value and writes a value computed from it.

Architecture position:
    Kernel > Services -- building block.  Called by the fulfillment service,
    the transfer coordinator and the admin service, always inside their
    transaction.  Flushes, never commits.

Invariants enforced:
    - allocated_quantity never goes below zero and never below safety
      stock: a decrement is ``UPDATE ... SET allocated = allocated - n
      WHERE allocated - safety >= n RETURNING ...``.  Zero rows affected
      means a concurrent writer got there first, or there was never enough.
    - At most one row per pair: creation happens inside a savepoint and a
      lost creation race falls back to the update path.
    - safety_stock <= allocated_quantity on every write path.
    - version increments on every write.

Failure modes:
    - InvalidDeltaError: a decrement could not be applied (row missing, or
      not enough available units at statement time).
    - InvalidQuantityError: non-integer, zero delta, or negative levels.
    - SafetyStockExceedsAllocationError: a write would leave safety above
      allocated.
    - AllocationNotFoundError: safety-stock change on a missing row.

Concurrency:
    PostgreSQL (READ COMMITTED): the conditional UPDATE re-evaluates its
    WHERE clause against the latest committed row version after waiting
    on the row lock, so two decrements can never both pass on stale data.
    SQLite: transactions start with BEGIN IMMEDIATE, writers are serialized.
    Lock order: allocation rows in (product_id, warehouse_id) order, then
    the audit sequence counter. Multi-row writers call lock_rows() first.
"""

from collections.abc import Iterable
from uuid import UUID, uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import AllocationRow, LedgerMutation
from stock_kernel.exceptions import (
    AllocationNotFoundError,
    InvalidDeltaError,
    InvalidQuantityError,
    SafetyStockExceedsAllocationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.stock_allocation import StockAllocation
from stock_kernel.selectors.allocation_selector import (
    ROW_COLUMNS as _ROW_COLUMNS,
    AllocationSelector,
    to_allocation_row as _to_row,
)
from stock_kernel.services.base import BaseService

logger = get_logger("services.ledger")


def _require_int(field: str, value, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(field, value, "must be an integer")
    if value < minimum:
        raise InvalidQuantityError(field, value, f"must be >= {minimum}")


class AllocationLedger(BaseService):
    """
    Allocation rows, read and written atomically.

    Contract:
        Returns ``AllocationRow`` / ``LedgerMutation`` DTOs.  ORM entities
        for allocation rows never leave this class.

    Non-goals:
        - No audit emission; callers audit with the returned before/after.
        - No business rules about which warehouse to use.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._reader = AllocationSelector(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, product_id: UUID, warehouse_id: UUID) -> AllocationRow | None:
        return self._reader.get(product_id, warehouse_id)

    def list_by_product(self, product_id: UUID) -> list[AllocationRow]:
        """All rows of a product, most allocated first, then by warehouse id."""
        return self._reader.list_by_product(product_id)

    def list_by_warehouse(self, warehouse_id: UUID) -> list[AllocationRow]:
        return self._reader.list_by_warehouse(warehouse_id)

    def _get_for_update(self, product_id: UUID, warehouse_id: UUID) -> AllocationRow | None:
        result = self.session.execute(
            select(*_ROW_COLUMNS)
            .where(
                StockAllocation.product_id == product_id,
                StockAllocation.warehouse_id == warehouse_id,
            )
            .with_for_update()
        ).one_or_none()
        return _to_row(result) if result is not None else None

    def lock_rows(self, pairs: Iterable[tuple[UUID, UUID]]) -> list[AllocationRow]:
        """
        Row-lock the existing rows of many (product_id, warehouse_id) pairs.

        Locks are taken in (product_id, warehouse_id) string order, the same
        order fulfillment decrements in, so a multi-row writer that locks up
        front and audits afterwards cannot deadlock against an order.
        Missing pairs are skipped; duplicates are locked once.
        """
        ordered = sorted(set(pairs), key=lambda p: (str(p[0]), str(p[1])))
        locked = []
        for product_id, warehouse_id in ordered:
            row = self._get_for_update(product_id, warehouse_id)
            if row is not None:
                locked.append(row)
        logger.debug(
            "allocation_rows_locked",
            extra={"requested": len(ordered), "locked": len(locked)},
        )
        return locked

    # ------------------------------------------------------------------
    # Relative writes
    # ------------------------------------------------------------------

    def upsert_add(self, product_id: UUID, warehouse_id: UUID, delta: int) -> LedgerMutation:
        """
        Add ``delta`` units to the pair's allocated quantity.

        A missing row is created with ``allocated = delta, safety = 0`` when
        delta is positive.  A negative delta only applies if at least
        ``|delta|`` units are available at statement time.

        Raises:
            InvalidQuantityError: delta is zero or not an integer.
            InvalidDeltaError: the decrement cannot be applied.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise InvalidQuantityError("delta", delta, "must be a non-zero integer")

        if delta < 0:
            return self._decrement(product_id, warehouse_id, -delta)

        mutation = self._increment(product_id, warehouse_id, delta)
        if mutation is not None:
            return mutation

        try:
            return self._insert(product_id, warehouse_id, delta, 0)
        except IntegrityError:
            # Lost the creation race; the row exists now.
            mutation = self._increment(product_id, warehouse_id, delta)
            if mutation is None:
                raise
            return mutation

    def _increment(self, product_id: UUID, warehouse_id: UUID, quantity: int) -> LedgerMutation | None:
        result = self.session.execute(
            update(StockAllocation)
            .where(
                StockAllocation.product_id == product_id,
                StockAllocation.warehouse_id == warehouse_id,
            )
            .values(
                allocated_quantity=StockAllocation.allocated_quantity + quantity,
                version=StockAllocation.version + 1,
                updated_at=self._clock.now(),
            )
            .returning(*_ROW_COLUMNS)
        ).one_or_none()

        if result is None:
            return None

        after = _to_row(result)
        before = AllocationRow(
            id=after.id,
            product_id=after.product_id,
            warehouse_id=after.warehouse_id,
            allocated_quantity=after.allocated_quantity - quantity,
            safety_stock=after.safety_stock,
            version=after.version - 1,
        )
        logger.debug(
            "ledger_delta_applied",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id),
                "delta": quantity,
                "allocated_after": after.allocated_quantity,
            },
        )
        return LedgerMutation(before=before, after=after)

    def _decrement(self, product_id: UUID, warehouse_id: UUID, quantity: int) -> LedgerMutation:
        result = self.session.execute(
            update(StockAllocation)
            .where(
                StockAllocation.product_id == product_id,
                StockAllocation.warehouse_id == warehouse_id,
                StockAllocation.allocated_quantity - StockAllocation.safety_stock >= quantity,
            )
            .values(
                allocated_quantity=StockAllocation.allocated_quantity - quantity,
                version=StockAllocation.version + 1,
                updated_at=self._clock.now(),
            )
            .returning(*_ROW_COLUMNS)
        ).one_or_none()

        if result is None:
            current = self.get(product_id, warehouse_id)
            logger.info(
                "ledger_delta_rejected",
                extra={
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "delta": -quantity,
                    "available": current.available_quantity if current else 0,
                    "row_exists": current is not None,
                },
            )
            raise InvalidDeltaError(
                product_id=str(product_id),
                warehouse_id=str(warehouse_id),
                delta=-quantity,
                available=current.available_quantity if current else 0,
                row_exists=current is not None,
            )

        after = _to_row(result)
        before = AllocationRow(
            id=after.id,
            product_id=after.product_id,
            warehouse_id=after.warehouse_id,
            allocated_quantity=after.allocated_quantity + quantity,
            safety_stock=after.safety_stock,
            version=after.version - 1,
        )
        logger.debug(
            "ledger_delta_applied",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id),
                "delta": -quantity,
                "allocated_after": after.allocated_quantity,
            },
        )
        return LedgerMutation(before=before, after=after)

    def _insert(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        allocated: int,
        safety: int,
    ) -> LedgerMutation:
        """Create the pair's row inside a savepoint; IntegrityError propagates."""
        now = self._clock.now()
        with self.session.begin_nested():
            result = self.session.execute(
                insert(StockAllocation)
                .values(
                    id=uuid4(),
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    allocated_quantity=allocated,
                    safety_stock=safety,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                .returning(*_ROW_COLUMNS)
            ).one()

        after = _to_row(result)
        logger.info(
            "ledger_row_created",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id),
                "allocated_quantity": allocated,
                "safety_stock": safety,
            },
        )
        return LedgerMutation(before=None, after=after)

    # ------------------------------------------------------------------
    # Absolute writes (administration)
    # ------------------------------------------------------------------

    def set_safety_stock(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        safety_stock: int,
    ) -> LedgerMutation:
        """
        Change the reserved buffer of an existing row.

        Raises:
            AllocationNotFoundError: no row for the pair.
            SafetyStockExceedsAllocationError: safety_stock > allocated.
        """
        _require_int("safety_stock", safety_stock, 0)

        before = self._get_for_update(product_id, warehouse_id)
        if before is None:
            raise AllocationNotFoundError(str(product_id), str(warehouse_id))

        result = self.session.execute(
            update(StockAllocation)
            .where(
                StockAllocation.id == before.id,
                StockAllocation.allocated_quantity >= safety_stock,
            )
            .values(
                safety_stock=safety_stock,
                version=StockAllocation.version + 1,
                updated_at=self._clock.now(),
            )
            .returning(*_ROW_COLUMNS)
        ).one_or_none()

        if result is None:
            current = self.get(product_id, warehouse_id)
            raise SafetyStockExceedsAllocationError(
                product_id=str(product_id),
                warehouse_id=str(warehouse_id),
                safety_stock=safety_stock,
                allocated_quantity=current.allocated_quantity if current else 0,
            )

        return LedgerMutation(before=before, after=_to_row(result))

    def set_levels(
        self,
        product_id: UUID,
        warehouse_id: UUID,
        allocated_quantity: int,
        safety_stock: int,
    ) -> LedgerMutation:
        """
        Overwrite both quantities of a pair (stock counts, bulk upserts).

        The existing row is locked before it is overwritten; a missing row
        is created.
        """
        _require_int("allocated_quantity", allocated_quantity, 0)
        _require_int("safety_stock", safety_stock, 0)
        if safety_stock > allocated_quantity:
            raise SafetyStockExceedsAllocationError(
                product_id=str(product_id),
                warehouse_id=str(warehouse_id),
                safety_stock=safety_stock,
                allocated_quantity=allocated_quantity,
            )

        before = self._get_for_update(product_id, warehouse_id)
        if before is None:
            try:
                return self._insert(product_id, warehouse_id, allocated_quantity, safety_stock)
            except IntegrityError:
                before = self._get_for_update(product_id, warehouse_id)
                if before is None:
                    raise

        result = self.session.execute(
            update(StockAllocation)
            .where(StockAllocation.id == before.id)
            .values(
                allocated_quantity=allocated_quantity,
                safety_stock=safety_stock,
                version=StockAllocation.version + 1,
                updated_at=self._clock.now(),
            )
            .returning(*_ROW_COLUMNS)
        ).one()

        after = _to_row(result)
        logger.info(
            "ledger_levels_set",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id),
                "allocated_before": before.allocated_quantity,
                "allocated_after": after.allocated_quantity,
                "safety_stock": after.safety_stock,
            },
        )
        return LedgerMutation(before=before, after=after)
