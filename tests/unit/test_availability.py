"""
Availability calculator tests.

Verifies:
- available = max(0, allocated - safety)
- totals across warehouses
- low-stock / out-of-stock classification
- utilization rate rounding and unknown capacity
"""

from dataclasses import dataclass

import pytest

from stock_kernel.domain import availability
from stock_kernel.domain.dtos import AllocationRow
from uuid import uuid4


@dataclass
class Levels:
    allocated_quantity: int
    safety_stock: int


class TestAvailable:
    @pytest.mark.parametrize(
        "allocated,safety,expected",
        [
            (50, 10, 40),
            (20, 0, 20),
            (10, 10, 0),
            (0, 0, 0),
            (5, 8, 0),
        ],
    )
    def test_available(self, allocated, safety, expected):
        assert availability.available(Levels(allocated, safety)) == expected

    def test_allocation_row_uses_same_rule(self):
        row = AllocationRow(
            id=uuid4(),
            product_id=uuid4(),
            warehouse_id=uuid4(),
            allocated_quantity=3,
            safety_stock=7,
            version=1,
        )
        assert row.available_quantity == 0


class TestTotals:
    def test_total_across_warehouses_includes_safety_stock(self):
        rows = [Levels(50, 10), Levels(20, 0)]
        assert availability.total_across_warehouses(rows) == 70

    def test_total_available(self):
        rows = [Levels(50, 10), Levels(20, 0), Levels(4, 9)]
        assert availability.total_available(rows) == 60

    def test_empty(self):
        assert availability.total_across_warehouses([]) == 0
        assert availability.total_available([]) == 0


class TestClassification:
    def test_low_stock_at_threshold(self):
        assert availability.is_low_stock(Levels(20, 10), threshold=10)

    def test_not_low_above_threshold(self):
        assert not availability.is_low_stock(Levels(21, 10), threshold=10)

    def test_out_of_stock_when_nothing_available(self):
        assert availability.is_out_of_stock(Levels(10, 10))
        assert not availability.is_out_of_stock(Levels(11, 10))


class TestUtilizationRate:
    def test_rounds_to_whole_percent(self):
        assert availability.utilization_rate([Levels(1, 0), Levels(1, 0)], capacity=3) == 67

    def test_unknown_capacity_is_zero(self):
        assert availability.utilization_rate([Levels(100, 0)], capacity=0) == 0

    def test_may_exceed_hundred(self):
        assert availability.utilization_rate([Levels(150, 0)], capacity=100) == 150
