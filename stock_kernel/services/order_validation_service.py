"""
BulkOrderValidator -- check a batch of orders against current stock.

Read-only: nothing is reserved and no audit event is written.  Every order
is assessed on its own against the same ledger state, so two orders that
each fit are both reported valid even if together they would not.
"""

import time
from collections.abc import Iterable

from sqlalchemy.orm import Session

from stock_kernel.domain.dtos import BulkValidationReport, OrderRequest
from stock_kernel.logging_config import get_logger
from stock_kernel.selectors.allocation_planner import AllocationPlanner

logger = get_logger("services.order_validation")


class BulkOrderValidator:
    """Per-order, per-line validation report for bulk imports."""

    def __init__(self, session: Session):
        self._planner = AllocationPlanner(session)

    def validate(self, orders: Iterable[OrderRequest]) -> BulkValidationReport:
        t0 = time.monotonic()
        report = BulkValidationReport(
            orders=tuple(self._planner.assess(order) for order in orders)
        )
        logger.info(
            "bulk_validation_completed",
            extra={
                "order_count": len(report.orders),
                "valid_count": report.valid_count,
                "invalid_count": report.invalid_count,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return report
