"""
Warehouse selection and line aggregation tests.

Verifies:
- SKUs compare case-insensitively after trimming
- Repeated SKUs are summed, first occurrence keeps its position
- Malformed lines are rejected
- Highest allocated eligible row wins, ties by warehouse id
"""

from uuid import UUID, uuid4

import pytest

from stock_kernel.domain.dtos import AllocationRow, OrderLine
from stock_kernel.domain.selection import aggregate_lines, choose_row, normalize_sku
from stock_kernel.exceptions import InvalidOrderLineError


def _row(allocated: int, safety: int = 0, warehouse_id: UUID | None = None) -> AllocationRow:
    return AllocationRow(
        id=uuid4(),
        product_id=uuid4(),
        warehouse_id=warehouse_id or uuid4(),
        allocated_quantity=allocated,
        safety_stock=safety,
        version=1,
    )


class TestNormalizeSku:
    def test_strip_and_casefold(self):
        assert normalize_sku("  Widget-1 ") == "widget-1"


class TestAggregateLines:
    def test_same_sku_is_summed(self):
        lines = aggregate_lines([OrderLine("WIDGET-1", 3), OrderLine("widget-1 ", 4)])

        assert len(lines) == 1
        assert lines[0].quantity == 7
        assert lines[0].sku == "WIDGET-1"
        assert lines[0].sku_key == "widget-1"

    def test_first_seen_order_is_kept(self):
        lines = aggregate_lines(
            [OrderLine("B", 1), OrderLine("A", 1), OrderLine("b", 2)]
        )
        assert [line.sku for line in lines] == ["B", "A"]
        assert [line.quantity for line in lines] == [3, 1]

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_non_positive_quantity_rejected(self, quantity):
        with pytest.raises(InvalidOrderLineError) as exc_info:
            aggregate_lines([OrderLine("A", quantity)])
        assert exc_info.value.code == "INVALID_ORDER_LINE"

    @pytest.mark.parametrize("quantity", [1.5, "2", True])
    def test_non_integer_quantity_rejected(self, quantity):
        with pytest.raises(InvalidOrderLineError):
            aggregate_lines([OrderLine("A", quantity)])

    def test_blank_sku_rejected(self):
        with pytest.raises(InvalidOrderLineError):
            aggregate_lines([OrderLine("   ", 1)])

    def test_empty_order_rejected(self):
        with pytest.raises(InvalidOrderLineError):
            aggregate_lines([])


class TestChooseRow:
    def test_highest_allocated_eligible_row_wins(self):
        a = _row(50, 10)
        b = _row(20, 0)
        assert choose_row([b, a], 30) is a

    def test_ineligible_larger_row_is_skipped(self):
        a = _row(50, 45)
        b = _row(20, 0)
        assert choose_row([a, b], 10) is b

    def test_tie_broken_by_warehouse_id(self):
        low = _row(30, warehouse_id=UUID("00000000-0000-0000-0000-000000000001"))
        high = _row(30, warehouse_id=UUID("00000000-0000-0000-0000-000000000002"))
        assert choose_row([high, low], 5) is low

    def test_none_when_no_single_row_suffices(self):
        assert choose_row([_row(20), _row(20)], 30) is None

    def test_exact_availability_is_eligible(self):
        row = _row(50, 10)
        assert choose_row([row], 40) is row
