"""
OrderFulfillmentService -- reserve stock for an order, all lines or none.

Responsibility:
    Chooses one fulfillment warehouse per order line and decrements the
    chosen allocation rows, or rejects the whole order.  Called by the
    order creation collaborator before it persists an order.

Architecture position:
    Kernel > Services -- entry point.  Owns its transaction when
    ``auto_commit=True`` (commit on success, rollback on failure).

Flow:
    1. aggregate lines by normalized SKU            (domain.selection)
    2. resolve SKUs, choose rows                    (AllocationPlanner)
    3. inside one savepoint, decrement rows in (product, warehouse)
       order and audit STOCK_RESERVED per line      (AllocationLedger, AuditorService)
    4. a decrement that finds less stock than planned is a conflict:
       the savepoint rolls back and steps 2-3 run again, at most
       ``max_fulfillment_attempts`` times

Invariants enforced:
    - All-or-nothing: the caller observes either every line reserved or
      none of them.
    - A line is never split across warehouses.
    - Concurrency conflicts never escape: exhaustion is reported as
      InsufficientStockError for the line that kept losing.

Failure modes:
    - InvalidOrderLineError, ProductNotFoundError, AmbiguousSkuError
    - InsufficientStockError (with per-warehouse breakdown)
    - MultiWarehouseOrderError when configured to reject split orders
    - StorageFailureError / AuditEmissionError on infrastructure failure
"""

import time
from collections.abc import Iterable
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session

from stock_kernel.config import EngineConfig
from stock_kernel.db.engine import is_lock_conflict
from stock_kernel.domain.availability import total_available
from stock_kernel.domain.clock import Clock, SystemClock
from stock_kernel.domain.dtos import (
    FulfillmentPlan,
    FulfillmentResult,
    LineAllocation,
    LineDecision,
    LedgerMutation,
    OrderLine,
    WarehouseAvailability,
)
from stock_kernel.domain.selection import aggregate_lines
from stock_kernel.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidDeltaError,
    MultiWarehouseOrderError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.selectors.allocation_planner import AllocationPlanner
from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.base import BaseService

logger = get_logger("services.fulfillment")


class OrderFulfillmentService(BaseService):
    """
    Order fulfillment selector.

    Contract:
        ``fulfill()`` returns a FulfillmentResult naming the warehouse
        each line was reserved from, plus the order's fulfillment
        warehouse (the first line's).  ``dry_run()`` performs the same
        planning with no writes.

    Non-goals:
        - Does NOT create the order record or price it.
        - Does NOT split a line across warehouses.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        auditor: AuditorService | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session, auto_commit)
        self._clock = clock or SystemClock()
        self._config = config or EngineConfig()
        self._ledger = AllocationLedger(session, self._clock)
        self._planner = AllocationPlanner(session)
        self._auditor = auditor or AuditorService(session, self._clock)

    def dry_run(
        self,
        lines: Iterable[OrderLine],
        business_id: UUID | None = None,
    ) -> FulfillmentPlan:
        """Plan an order against current stock without writing anything."""
        return self._planner.plan(lines, business_id)

    def fulfill(
        self,
        lines: Iterable[OrderLine],
        actor_id: UUID,
        order_id: UUID | None = None,
        business_id: UUID | None = None,
    ) -> FulfillmentResult:
        """
        Reserve stock for every line of an order.

        Postconditions:
            - On success every chosen row was decremented by its line's
              quantity and one STOCK_RESERVED audit event exists per line;
              the session is committed when auto_commit=True.
            - On failure no row was changed; the session is rolled back
              when auto_commit=True.
        """
        lines = tuple(lines)
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            order_id=str(order_id) if order_id is not None else None,
        ):
            logger.info("fulfillment_started", extra={"line_count": len(lines)})
            t0 = time.monotonic()

            try:
                result = self._fulfill(lines, actor_id, order_id, business_id)
                self._commit()
            except StockKernelError as exc:
                self._rollback()
                logger.warning(
                    "fulfillment_rejected",
                    extra={
                        "error_code": exc.code,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except DBAPIError as exc:
                self._rollback()
                logger.error(
                    "fulfillment_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise self._storage_failure("fulfill", exc) from exc
            except Exception:
                self._rollback()
                logger.error(
                    "fulfillment_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                "fulfillment_completed",
                extra={
                    "fulfillment_warehouse_id": str(result.fulfillment_warehouse_id),
                    "spans_multiple_warehouses": result.spans_multiple_warehouses,
                    "line_count": len(result.allocations),
                    "attempts": result.attempts,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _fulfill(
        self,
        lines: tuple[OrderLine, ...],
        actor_id: UUID,
        order_id: UUID | None,
        business_id: UUID | None,
    ) -> FulfillmentResult:
        aggregated = aggregate_lines(lines)
        max_attempts = self._config.max_fulfillment_attempts
        lost_line: LineDecision | None = None

        for attempt in range(1, max_attempts + 1):
            plan = self._planner.plan_aggregated(aggregated, business_id)

            if self._config.reject_multi_warehouse_orders and plan.spans_multiple_warehouses:
                raise MultiWarehouseOrderError([str(w) for w in plan.warehouse_ids])

            try:
                allocations = self._reserve(plan, actor_id, order_id)
            except ConcurrencyConflictError as exc:
                lost_line = next(
                    d for d in plan.decisions if str(d.product_id) == exc.entity_id
                )
                logger.warning(
                    "fulfillment_conflict_retry",
                    extra={
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "sku": lost_line.sku,
                        "detail": exc.detail,
                    },
                )
                continue

            return FulfillmentResult(
                order_id=order_id,
                allocations=allocations,
                fulfillment_warehouse_id=plan.fulfillment_warehouse_id,
                spans_multiple_warehouses=plan.spans_multiple_warehouses,
                attempts=attempt,
            )

        raise self._exhausted(lost_line)

    def _reserve(
        self,
        plan: FulfillmentPlan,
        actor_id: UUID,
        order_id: UUID | None,
    ) -> tuple[LineAllocation, ...]:
        """Decrement every chosen row and audit each line, inside one savepoint."""
        mutations: dict[UUID, LedgerMutation] = {}

        with self.session.begin_nested():
            # Fixed lock order across concurrent orders
            for decision in sorted(
                plan.decisions,
                key=lambda d: (str(d.product_id), str(d.warehouse_id)),
            ):
                mutations[decision.product_id] = self._decrement(decision)

            for decision in plan.decisions:
                mutation = mutations[decision.product_id]
                self._auditor.emit(
                    entity_type="StockAllocation",
                    entity_id=mutation.after.id,
                    action=AuditAction.STOCK_RESERVED,
                    details={
                        "sku": decision.sku,
                        "product_id": decision.product_id,
                        "warehouse_id": decision.warehouse_id,
                        "quantity": decision.quantity,
                        "quantity_before": mutation.before.allocated_quantity,
                        "quantity_after": mutation.after.allocated_quantity,
                        "order_id": order_id,
                    },
                    actor_id=actor_id,
                )

        return tuple(
            LineAllocation(
                sku=d.sku,
                product_id=d.product_id,
                warehouse_id=d.warehouse_id,
                quantity=d.quantity,
                quantity_before=mutations[d.product_id].before.allocated_quantity,
                quantity_after=mutations[d.product_id].after.allocated_quantity,
            )
            for d in plan.decisions
        )

    def _decrement(self, decision: LineDecision) -> LedgerMutation:
        try:
            return self._ledger.upsert_add(
                decision.product_id, decision.warehouse_id, -decision.quantity
            )
        except InvalidDeltaError as exc:
            raise ConcurrencyConflictError(
                "StockAllocation",
                str(decision.product_id),
                f"warehouse {decision.warehouse_id} has {exc.available} available, "
                f"planned against {decision.available_quantity}",
            ) from exc
        except OperationalError as exc:
            if is_lock_conflict(exc):
                raise ConcurrencyConflictError(
                    "StockAllocation",
                    str(decision.product_id),
                    "lock conflict",
                ) from exc
            raise

    def _exhausted(self, lost_line: LineDecision) -> InsufficientStockError:
        rows = self._ledger.list_by_product(lost_line.product_id)
        return InsufficientStockError(
            requested=lost_line.quantity,
            available=total_available(rows),
            sku=lost_line.sku,
            product_id=str(lost_line.product_id),
            breakdown=[WarehouseAvailability.from_row(r).as_dict() for r in rows],
        )
