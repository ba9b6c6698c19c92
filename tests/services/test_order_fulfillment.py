"""
OrderFulfillmentService tests.

Verifies:
- The WIDGET-1 selection scenario (largest eligible allocation wins)
- Aggregation: lines 3 + 4 of one SKU behave exactly like one line of 7
- All-or-nothing: any failing line leaves every row untouched
- Conflict retries re-plan against fresh stock, then give up with
  InsufficientStockError
- Every reserved line is audited
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.config import EngineConfig
from stock_kernel.domain.dtos import OrderLine
from stock_kernel.exceptions import (
    AmbiguousSkuError,
    AuditEmissionError,
    InsufficientStockError,
    InvalidOrderLineError,
    MultiWarehouseOrderError,
    ProductNotFoundError,
)
from stock_kernel.models.audit_event import AuditAction, AuditEvent
from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.fulfillment_service import OrderFulfillmentService


@pytest.fixture
def fulfillment(session, deterministic_clock, auditor):
    return OrderFulfillmentService(session, deterministic_clock, auditor=auditor)


@pytest.fixture
def ledger(session, deterministic_clock):
    return AllocationLedger(session, deterministic_clock)


def _levels(ledger, product, *warehouses):
    return [ledger.get(product.id, w.id).allocated_quantity for w in warehouses]


def _reserved_count(session) -> int:
    return session.execute(
        select(func.count())
        .select_from(AuditEvent)
        .where(AuditEvent.action == AuditAction.STOCK_RESERVED.value)
    ).scalar_one()


class FailingAuditor(AuditorService):
    """Auditor that fails on the Nth STOCK_RESERVED emission."""

    def __init__(self, session, clock, fail_on: int):
        super().__init__(session, clock)
        self._fail_on = fail_on
        self._calls = 0

    def emit(self, entity_type, entity_id, action, details, actor_id):
        if action == AuditAction.STOCK_RESERVED:
            self._calls += 1
            if self._calls == self._fail_on:
                raise AuditEmissionError(entity_type, str(entity_id), action.value, "disk full")
        return super().emit(entity_type, entity_id, action, details, actor_id)


class TestWarehouseSelection:
    def test_widget_scenario_prefers_largest_allocation(
        self, fulfillment, ledger, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario

        result = fulfillment.fulfill([OrderLine("WIDGET-1", 30)], test_actor_id)

        assert result.fulfillment_warehouse_id == wh_a.id
        assert result.allocations[0].warehouse_id == wh_a.id
        assert result.allocations[0].quantity_before == 50
        assert result.allocations[0].quantity_after == 20
        assert not result.spans_multiple_warehouses
        assert _levels(ledger, product, wh_a, wh_b) == [20, 20]
        assert ledger.get(product.id, wh_a.id).available_quantity == 10

    def test_falls_back_when_largest_cannot_cover(
        self, fulfillment, ledger, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario
        fulfillment.fulfill([OrderLine("WIDGET-1", 35)], test_actor_id)

        result = fulfillment.fulfill([OrderLine("WIDGET-1", 15)], test_actor_id)

        assert result.fulfillment_warehouse_id == wh_b.id
        assert _levels(ledger, product, wh_a, wh_b) == [15, 5]

    def test_sku_lookup_is_case_insensitive(self, fulfillment, widget_scenario, test_actor_id):
        _, wh_a, _ = widget_scenario
        result = fulfillment.fulfill([OrderLine("  widget-1 ", 1)], test_actor_id)
        assert result.fulfillment_warehouse_id == wh_a.id
        assert result.allocations[0].sku == "widget-1"

    def test_line_is_never_split(self, fulfillment, ledger, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario

        with pytest.raises(InsufficientStockError) as exc_info:
            fulfillment.fulfill([OrderLine("WIDGET-1", 45)], test_actor_id)

        error = exc_info.value
        assert error.requested == 45
        assert error.available == 60
        assert {entry["available_quantity"] for entry in error.breakdown} == {40, 20}
        assert _levels(ledger, product, wh_a, wh_b) == [50, 20]


class TestAggregation:
    def test_split_lines_equal_single_line(
        self, session, fulfillment, ledger, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario

        split = fulfillment.fulfill(
            [OrderLine("WIDGET-1", 3), OrderLine("widget-1", 4)], test_actor_id
        )

        assert len(split.allocations) == 1
        assert split.allocations[0].quantity == 7
        assert split.total_quantity == 7
        assert _levels(ledger, product, wh_a, wh_b) == [43, 20]
        assert _reserved_count(session) == 1

    def test_aggregated_total_checked_against_one_row(
        self, fulfillment, widget_scenario, test_actor_id
    ):
        with pytest.raises(InsufficientStockError):
            fulfillment.fulfill(
                [OrderLine("WIDGET-1", 25), OrderLine("WIDGET-1", 20)], test_actor_id
            )


class TestAllOrNothing:
    def test_unknown_sku_rejects_whole_order(
        self, fulfillment, ledger, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario

        with pytest.raises(ProductNotFoundError):
            fulfillment.fulfill(
                [OrderLine("WIDGET-1", 5), OrderLine("NOPE", 1)], test_actor_id
            )

        assert _levels(ledger, product, wh_a, wh_b) == [50, 20]

    def test_insufficient_second_line_rejects_whole_order(
        self, fulfillment, ledger, widget_scenario, make_product, stock, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario
        gadget = make_product("GADGET-1")
        stock(gadget, wh_a, 2)

        with pytest.raises(InsufficientStockError) as exc_info:
            fulfillment.fulfill(
                [OrderLine("WIDGET-1", 5), OrderLine("GADGET-1", 3)], test_actor_id
            )

        assert exc_info.value.sku == "GADGET-1"
        assert _levels(ledger, product, wh_a, wh_b) == [50, 20]
        assert ledger.get(gadget.id, wh_a.id).allocated_quantity == 2

    def test_audit_failure_rolls_back_every_line(
        self,
        session,
        deterministic_clock,
        ledger,
        widget_scenario,
        make_product,
        stock,
        test_actor_id,
    ):
        product, wh_a, wh_b = widget_scenario
        gadget = make_product("GADGET-1")
        stock(gadget, wh_b, 10)
        service = OrderFulfillmentService(
            session,
            deterministic_clock,
            auditor=FailingAuditor(session, deterministic_clock, fail_on=2),
        )

        with pytest.raises(AuditEmissionError):
            service.fulfill(
                [OrderLine("WIDGET-1", 5), OrderLine("GADGET-1", 3)], test_actor_id
            )

        assert _levels(ledger, product, wh_a, wh_b) == [50, 20]
        assert ledger.get(gadget.id, wh_b.id).allocated_quantity == 10
        assert _reserved_count(session) == 0

    @pytest.mark.parametrize(
        "lines",
        [
            [],
            [OrderLine("WIDGET-1", 0)],
            [OrderLine("", 1)],
        ],
    )
    def test_malformed_orders_rejected(self, fulfillment, widget_scenario, test_actor_id, lines):
        with pytest.raises(InvalidOrderLineError):
            fulfillment.fulfill(lines, test_actor_id)


class TestMultiWarehouse:
    @pytest.fixture
    def split_order(self, widget_scenario, make_product, stock):
        product, wh_a, wh_b = widget_scenario
        gadget = make_product("GADGET-1")
        stock(gadget, wh_b, 10)
        return [OrderLine("WIDGET-1", 5), OrderLine("GADGET-1", 5)], wh_a, wh_b

    def test_flagged_by_default(self, fulfillment, split_order, test_actor_id):
        lines, wh_a, wh_b = split_order

        result = fulfillment.fulfill(lines, test_actor_id)

        assert result.spans_multiple_warehouses
        assert result.fulfillment_warehouse_id == wh_a.id
        assert [a.warehouse_id for a in result.allocations] == [wh_a.id, wh_b.id]

    def test_rejected_when_configured(
        self, session, deterministic_clock, ledger, split_order, test_actor_id
    ):
        lines, wh_a, _ = split_order
        service = OrderFulfillmentService(
            session,
            deterministic_clock,
            config=EngineConfig(reject_multi_warehouse_orders=True),
        )

        with pytest.raises(MultiWarehouseOrderError):
            service.fulfill(lines, test_actor_id)

        assert _reserved_count(session) == 0


class TestConflictRetry:
    def test_stale_plan_is_replanned(
        self, session, fulfillment, ledger, widget_scenario, test_actor_id, monkeypatch
    ):
        product, wh_a, wh_b = widget_scenario
        original = fulfillment._planner.plan_aggregated
        calls = []

        def plan_then_drain(aggregated, business_id=None):
            plan = original(aggregated, business_id)
            calls.append(plan)
            if len(calls) == 1:
                # Another order takes most of A between planning and reserving.
                ledger.upsert_add(product.id, wh_a.id, -30)
            return plan

        monkeypatch.setattr(fulfillment._planner, "plan_aggregated", plan_then_drain)

        result = fulfillment.fulfill([OrderLine("WIDGET-1", 15)], test_actor_id)

        assert result.attempts == 2
        assert calls[0].fulfillment_warehouse_id == wh_a.id
        assert result.fulfillment_warehouse_id == wh_b.id
        assert _levels(ledger, product, wh_a, wh_b) == [20, 5]

    def test_exhausted_retries_report_insufficient_stock(
        self, session, deterministic_clock, ledger, widget_scenario, test_actor_id,
        monkeypatch, captured_logs,
    ):
        product, wh_a, _ = widget_scenario
        service = OrderFulfillmentService(
            session, deterministic_clock, config=EngineConfig(max_fulfillment_attempts=2)
        )
        original = service._planner.plan_aggregated

        def always_stale(aggregated, business_id=None):
            # Planning sees 40 available at A, reservation finds only 25.
            ledger.set_levels(product.id, wh_a.id, 50, 10)
            plan = original(aggregated, business_id)
            ledger.upsert_add(product.id, wh_a.id, -15)
            return plan

        monkeypatch.setattr(service._planner, "plan_aggregated", always_stale)

        with pytest.raises(InsufficientStockError) as exc_info:
            service.fulfill([OrderLine("WIDGET-1", 30)], test_actor_id)

        assert exc_info.value.sku == "WIDGET-1"
        assert exc_info.value.available == 45
        retries = [r for r in captured_logs() if r["message"] == "fulfillment_conflict_retry"]
        assert len(retries) == 2
        assert _levels(ledger, product, wh_a) == [50]


class TestDryRunAndAudit:
    def test_dry_run_is_idempotent(self, session, fulfillment, ledger, widget_scenario):
        product, wh_a, wh_b = widget_scenario
        lines = [OrderLine("WIDGET-1", 30)]

        first = fulfillment.dry_run(lines)
        second = fulfillment.dry_run(lines)

        assert first == second
        assert first.fulfillment_warehouse_id == wh_a.id
        assert _levels(ledger, product, wh_a, wh_b) == [50, 20]
        assert _reserved_count(session) == 0

    def test_each_line_audited(self, auditor, fulfillment, ledger, widget_scenario, test_actor_id):
        product, wh_a, _ = widget_scenario
        order_id = uuid4()

        fulfillment.fulfill([OrderLine("WIDGET-1", 30)], test_actor_id, order_id=order_id)

        row = ledger.get(product.id, wh_a.id)
        trace = auditor.get_trace("StockAllocation", row.id)
        assert trace.last_action == AuditAction.STOCK_RESERVED
        payload = trace.entries[-1].payload
        assert payload["quantity_before"] == 50
        assert payload["quantity_after"] == 20
        assert payload["order_id"] == str(order_id)
        assert auditor.validate_chain()

    def test_logs_carry_order_context(self, fulfillment, widget_scenario, test_actor_id, captured_logs):
        order_id = uuid4()

        fulfillment.fulfill([OrderLine("WIDGET-1", 1)], test_actor_id, order_id=order_id)

        completed = [r for r in captured_logs() if r["message"] == "fulfillment_completed"]
        assert len(completed) == 1
        assert completed[0]["order_id"] == str(order_id)
        assert completed[0]["attempts"] == 1

    def test_ambiguous_sku_needs_business_scope(
        self, fulfillment, widget_scenario, make_product, make_warehouse, stock, test_actor_id
    ):
        other_business = uuid4()
        twin = make_product("WIDGET-1", business=other_business)
        stock(twin, make_warehouse("C"), 5)

        with pytest.raises(AmbiguousSkuError):
            fulfillment.fulfill([OrderLine("WIDGET-1", 1)], test_actor_id)

        result = fulfillment.fulfill(
            [OrderLine("WIDGET-1", 1)], test_actor_id, business_id=other_business
        )
        assert result.allocations[0].product_id == twin.id
