"""
Module: stock_kernel.selectors.allocation_planner
Responsibility: The read-only planning phase of order fulfillment.
    Aggregates lines, resolves SKUs and picks one warehouse per line.
Architecture position: Kernel > Selectors.  Used by
    OrderFulfillmentService (plan, then commit) and BulkOrderValidator
    (assess, never commit).

The two entry points share the same candidate lookup and selection rule:

    plan()    -> FulfillmentPlan, raising on the first problem
    assess()  -> OrderValidation, collecting every problem per line
"""

from collections.abc import Iterable
from uuid import UUID

from stock_kernel.domain.availability import total_available
from stock_kernel.domain.dtos import (
    AggregatedLine,
    AllocationRow,
    FulfillmentPlan,
    LineDecision,
    LineIssue,
    OrderLine,
    OrderRequest,
    OrderValidation,
    ProductInfo,
    WarehouseAvailability,
)
from stock_kernel.domain.selection import aggregate_lines, choose_row
from stock_kernel.exceptions import (
    CatalogError,
    InsufficientStockError,
    InvalidOrderLineError,
)
from stock_kernel.selectors.allocation_selector import AllocationSelector
from stock_kernel.selectors.base import BaseSelector
from stock_kernel.selectors.catalog_selector import CatalogSelector


def _decision(line: AggregatedLine, product: ProductInfo, row: AllocationRow) -> LineDecision:
    return LineDecision(
        sku=line.sku,
        product_id=product.id,
        quantity=line.quantity,
        warehouse_id=row.warehouse_id,
        allocated_quantity=row.allocated_quantity,
        available_quantity=row.available_quantity,
    )


def _breakdown(rows: list[AllocationRow]) -> tuple[WarehouseAvailability, ...]:
    return tuple(WarehouseAvailability.from_row(r) for r in rows)


class AllocationPlanner(BaseSelector):
    """Dry-run fulfillment against current ledger state."""

    def __init__(self, session):
        super().__init__(session)
        self._catalog = CatalogSelector(session)
        self._allocations = AllocationSelector(session)

    def _candidates(
        self,
        line: AggregatedLine,
        business_id: UUID | None,
    ) -> tuple[ProductInfo, list[AllocationRow]]:
        product = self._catalog.resolve_sku(line.sku, business_id)
        return product, self._allocations.list_by_product(product.id)

    def plan(
        self,
        lines: Iterable[OrderLine],
        business_id: UUID | None = None,
    ) -> FulfillmentPlan:
        """
        Choose a warehouse for every line of an order.

        Raises:
            InvalidOrderLineError, ProductNotFoundError, AmbiguousSkuError,
            InsufficientStockError.
        """
        return self.plan_aggregated(aggregate_lines(lines), business_id)

    def plan_aggregated(
        self,
        aggregated: tuple[AggregatedLine, ...],
        business_id: UUID | None = None,
    ) -> FulfillmentPlan:
        decisions = []
        for line in aggregated:
            product, rows = self._candidates(line, business_id)
            row = choose_row(rows, line.quantity)
            if row is None:
                raise InsufficientStockError(
                    requested=line.quantity,
                    available=total_available(rows),
                    sku=line.sku,
                    product_id=str(product.id),
                    breakdown=[entry.as_dict() for entry in _breakdown(rows)],
                )
            decisions.append(_decision(line, product, row))
        return FulfillmentPlan(decisions=tuple(decisions))

    def assess(self, order: OrderRequest) -> OrderValidation:
        """Collect every problem with an order instead of stopping at the first."""
        issues: list[LineIssue] = []
        valid_lines: list[OrderLine] = []

        if not order.lines:
            issues.append(
                LineIssue(sku="", code=InvalidOrderLineError.code, message="order has no lines")
            )

        for line in order.lines:
            try:
                aggregate_lines([line])
            except InvalidOrderLineError as exc:
                issues.append(
                    LineIssue(sku=str(line.sku), code=exc.code, message=exc.reason)
                )
            else:
                valid_lines.append(line)

        decisions: list[LineDecision] = []
        for line in aggregate_lines(valid_lines) if valid_lines else ():
            try:
                product, rows = self._candidates(line, order.business_id)
            except CatalogError as exc:
                issues.append(
                    LineIssue(
                        sku=line.sku,
                        code=exc.code,
                        message=str(exc),
                        requested=line.quantity,
                    )
                )
                continue

            row = choose_row(rows, line.quantity)
            if row is None:
                available = total_available(rows)
                issues.append(
                    LineIssue(
                        sku=line.sku,
                        code=InsufficientStockError.code,
                        message=(
                            f"Insufficient stock for {line.sku}: "
                            f"requested {line.quantity}, available {available}"
                        ),
                        requested=line.quantity,
                        available=available,
                        breakdown=_breakdown(rows),
                    )
                )
            else:
                decisions.append(_decision(line, product, row))

        plan = FulfillmentPlan(decisions=tuple(decisions)) if not issues else None
        return OrderValidation(order_ref=order.order_ref, issues=tuple(issues), plan=plan)
