"""
TransferCoordinator tests.

Verifies:
- The 15-unit transfer scenario completes and conserves stock
- The 50-unit request is rejected, no row changes, record is FAILED
- Structural errors and unknown entities leave no record at all
- A failure after the ledger writes rolls them back
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from stock_kernel.domain.availability import total_across_warehouses
from stock_kernel.domain.transfer_state import TransferStatus
from stock_kernel.exceptions import (
    AuditEmissionError,
    InsufficientStockError,
    InvalidTransferError,
    NoAllocationAtSourceError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from stock_kernel.models.audit_event import AuditAction
from stock_kernel.models.stock_transfer import StockTransfer
from stock_kernel.selectors.stock_selector import StockSelector
from stock_kernel.services.allocation_ledger import AllocationLedger
from stock_kernel.services.auditor_service import AuditorService
from stock_kernel.services.transfer_service import TransferCoordinator


@pytest.fixture
def coordinator(session, deterministic_clock, auditor):
    return TransferCoordinator(session, deterministic_clock, auditor)


@pytest.fixture
def ledger(session, deterministic_clock):
    return AllocationLedger(session, deterministic_clock)


def _transfer_count(session) -> int:
    return session.execute(select(func.count()).select_from(StockTransfer)).scalar_one()


class FailingCompletionAuditor(AuditorService):
    def emit(self, entity_type, entity_id, action, details, actor_id):
        if action == AuditAction.TRANSFER_COMPLETED:
            raise AuditEmissionError(entity_type, str(entity_id), action.value, "disk full")
        return super().emit(entity_type, entity_id, action, details, actor_id)


class TestTransferScenarios:
    def test_fifteen_units_from_a_to_b(self, coordinator, ledger, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario

        result = coordinator.transfer(product.id, wh_a.id, wh_b.id, 15, test_actor_id)

        assert result.transfer.status == TransferStatus.COMPLETED
        assert result.transfer.completed_at is not None
        assert ledger.get(product.id, wh_a.id).allocated_quantity == 35
        assert ledger.get(product.id, wh_b.id).allocated_quantity == 35
        assert result.source_available == 25
        assert result.destination_available == 35

    def test_fifty_units_rejected(
        self, session, coordinator, ledger, auditor, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario

        with pytest.raises(InsufficientStockError) as exc_info:
            coordinator.transfer(product.id, wh_a.id, wh_b.id, 50, test_actor_id)

        assert exc_info.value.available == 40
        assert ledger.get(product.id, wh_a.id).allocated_quantity == 50
        assert ledger.get(product.id, wh_b.id).allocated_quantity == 20

        page = StockSelector(session).list_transfers()
        assert page.total == 1
        record = page.items[0]
        assert record.status == TransferStatus.FAILED
        assert record.failure_reason.startswith("INSUFFICIENT_STOCK")
        assert record.completed_at is None
        assert auditor.get_trace("StockTransfer", record.id).actions == (
            AuditAction.TRANSFER_FAILED,
        )

    def test_whole_availability_can_move(self, coordinator, ledger, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario

        result = coordinator.transfer(product.id, wh_a.id, wh_b.id, 40, test_actor_id)

        assert result.source_available == 0
        assert ledger.get(product.id, wh_a.id).allocated_quantity == 10

    def test_destination_row_is_created(
        self, coordinator, ledger, widget_scenario, make_warehouse, test_actor_id
    ):
        product, wh_a, _ = widget_scenario
        wh_c = make_warehouse("C")

        result = coordinator.transfer(product.id, wh_a.id, wh_c.id, 5, test_actor_id)

        row = ledger.get(product.id, wh_c.id)
        assert row.allocated_quantity == 5
        assert row.safety_stock == 0
        assert result.destination_available == 5

    def test_stock_is_conserved(self, coordinator, ledger, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario
        before = total_across_warehouses(ledger.list_by_product(product.id))

        coordinator.transfer(product.id, wh_b.id, wh_a.id, 20, test_actor_id)
        coordinator.transfer(product.id, wh_a.id, wh_b.id, 7, test_actor_id)

        assert total_across_warehouses(ledger.list_by_product(product.id)) == before


class TestRejectedRequests:
    def test_same_warehouse(self, session, coordinator, widget_scenario, test_actor_id):
        product, wh_a, _ = widget_scenario

        with pytest.raises(InvalidTransferError):
            coordinator.transfer(product.id, wh_a.id, wh_a.id, 1, test_actor_id)

        assert _transfer_count(session) == 0

    @pytest.mark.parametrize("quantity", [0, -3, 2.5])
    def test_bad_quantity(self, session, coordinator, widget_scenario, test_actor_id, quantity):
        product, wh_a, wh_b = widget_scenario

        with pytest.raises(InvalidTransferError):
            coordinator.transfer(product.id, wh_a.id, wh_b.id, quantity, test_actor_id)

        assert _transfer_count(session) == 0

    def test_unknown_entities(self, session, coordinator, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario

        with pytest.raises(ProductNotFoundError):
            coordinator.transfer(uuid4(), wh_a.id, wh_b.id, 1, test_actor_id)
        with pytest.raises(WarehouseNotFoundError):
            coordinator.transfer(product.id, wh_a.id, uuid4(), 1, test_actor_id)

        assert _transfer_count(session) == 0

    def test_no_row_at_source(
        self, session, coordinator, widget_scenario, make_warehouse, test_actor_id
    ):
        product, wh_a, _ = widget_scenario
        empty = make_warehouse("Empty")

        with pytest.raises(NoAllocationAtSourceError):
            coordinator.transfer(product.id, empty.id, wh_a.id, 1, test_actor_id)

        record = StockSelector(session).list_transfers().items[0]
        assert record.status == TransferStatus.FAILED
        assert record.failure_reason.startswith("NO_ALLOCATION_AT_SOURCE")

    def test_failure_after_ledger_writes_rolls_them_back(
        self, session, deterministic_clock, ledger, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario
        coordinator = TransferCoordinator(
            session,
            deterministic_clock,
            FailingCompletionAuditor(session, deterministic_clock),
        )

        with pytest.raises(AuditEmissionError):
            coordinator.transfer(product.id, wh_a.id, wh_b.id, 15, test_actor_id)

        assert ledger.get(product.id, wh_a.id).allocated_quantity == 50
        assert ledger.get(product.id, wh_b.id).allocated_quantity == 20
        record = StockSelector(session).list_transfers().items[0]
        assert record.status == TransferStatus.FAILED
        assert record.failure_reason.startswith("AUDIT_EMISSION_FAILED")


class TestTransferRecords:
    def test_request_details_are_kept(self, coordinator, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario
        approver = uuid4()

        result = coordinator.transfer(
            product.id, wh_a.id, wh_b.id, 3, test_actor_id,
            notes="rebalance", approved_by=approver,
        )

        record = result.transfer
        assert record.requested_by_id == test_actor_id
        assert record.approved_by_id == approver
        assert record.notes == "rebalance"
        assert record.quantity == 3

    def test_completed_audit_has_both_snapshots(
        self, coordinator, auditor, widget_scenario, test_actor_id
    ):
        product, wh_a, wh_b = widget_scenario

        result = coordinator.transfer(product.id, wh_a.id, wh_b.id, 15, test_actor_id)

        trace = auditor.get_trace("StockTransfer", result.transfer.id)
        payload = trace.entries[-1].payload
        assert trace.last_action == AuditAction.TRANSFER_COMPLETED
        assert payload["source_before"]["allocated_quantity"] == 50
        assert payload["source_after"]["allocated_quantity"] == 35
        assert payload["destination_before"]["allocated_quantity"] == 20
        assert payload["destination_after"]["allocated_quantity"] == 35

    def test_sequence_orders_newest_first(self, session, coordinator, widget_scenario, test_actor_id):
        product, wh_a, wh_b = widget_scenario

        first = coordinator.transfer(product.id, wh_a.id, wh_b.id, 1, test_actor_id)
        second = coordinator.transfer(product.id, wh_b.id, wh_a.id, 1, test_actor_id)

        assert second.transfer.seq > first.transfer.seq
        items = StockSelector(session).list_transfers().items
        assert [t.id for t in items] == [second.transfer.id, first.transfer.id]

    def test_logs_carry_transfer_id(self, coordinator, widget_scenario, test_actor_id, captured_logs):
        product, wh_a, wh_b = widget_scenario

        result = coordinator.transfer(product.id, wh_a.id, wh_b.id, 1, test_actor_id)

        completed = [r for r in captured_logs() if r["message"] == "transfer_completed"]
        assert completed[0]["transfer_id"] == str(result.transfer.id)
        assert completed[0]["product_id"] == str(product.id)
