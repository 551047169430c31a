"""
Unit tests for line quantity reconciliation.
"""
import logging
from decimal import Decimal

import pytest

from app.exceptions import ReconciliationError
from app.services import reconciliation as rec
from app.services.reconciliation import LineQuantities


class TestOutstanding:

    def test_ordered_minus_allocated_minus_shipped(self):
        line = LineQuantities(ordered=10, allocated=4, shipped=3, in_fulfillment=1)
        assert rec.outstanding(line) == 3

    def test_nothing_allocated(self):
        assert rec.outstanding(LineQuantities(ordered=7)) == 7

    def test_negative_is_clamped_for_display_and_logged(self, caplog):
        line = LineQuantities(ordered=5, allocated=4, shipped=3, line_id="L1")
        with caplog.at_level(logging.WARNING, logger="app.services.reconciliation"):
            assert rec.outstanding(line) == 0
        assert "Negative outstanding" in caplog.text

    def test_negative_raises_in_strict_mode(self):
        line = LineQuantities(ordered=5, allocated=4, shipped=3, line_id="L1")
        with pytest.raises(ReconciliationError) as exc_info:
            rec.outstanding(line, strict=True)
        assert exc_info.value.details["anomaly"] == rec.NEGATIVE_OUTSTANDING
        assert exc_info.value.details["line_id"] == "L1"
        assert exc_info.value.status_code == 422


class TestProgressSegments:

    def test_worked_example(self):
        line = LineQuantities(ordered=10, allocated=4, shipped=3, in_fulfillment=1)
        segments = rec.progress_segments(line)
        assert segments.as_percentages() == {
            "shipped": 30.0,
            "in_fulfillment": 10.0,
            "allocated_not_picked": 30.0,
        }
        assert segments.total == pytest.approx(0.7)

    def test_zero_ordered_gives_zero_segments(self):
        segments = rec.progress_segments(LineQuantities(ordered=0, allocated=2))
        assert segments.total == 0

    def test_allocated_below_in_fulfillment_does_not_go_negative(self):
        line = LineQuantities(ordered=10, allocated=1, in_fulfillment=3)
        assert rec.progress_segments(line).allocated_not_picked == 0

    def test_overflow_is_an_anomaly(self):
        line = LineQuantities(ordered=4, allocated=3, shipped=3, in_fulfillment=0)
        assert rec.SEGMENT_OVERFLOW in rec.find_anomalies(line)
        with pytest.raises(ReconciliationError):
            rec.progress_segments(line, strict=True)

    def test_sum_never_exceeds_one_for_consistent_lines(self):
        for ordered, allocated, shipped, in_fulfillment in [
            (10, 10, 0, 0),
            (10, 5, 5, 5),
            (10, 0, 10, 0),
            (3, 2, 1, 2),
        ]:
            line = LineQuantities(ordered, allocated, shipped, in_fulfillment)
            assert rec.progress_segments(line, strict=True).total <= 1.0


class TestCoverage:

    def test_coverable_when_available_covers_outstanding(self):
        line = LineQuantities(ordered=10, allocated=4, available_now=6)
        assert rec.is_coverable_now(line)
        assert rec.stock_severity(line) == "success"

    def test_partial_stock_is_warn(self):
        line = LineQuantities(ordered=10, allocated=4, available_now=2)
        assert not rec.is_coverable_now(line)
        assert rec.stock_severity(line) == "warn"

    def test_no_stock_is_danger(self):
        line = LineQuantities(ordered=10, available_now=0)
        assert rec.stock_severity(line) == "danger"

    def test_nothing_outstanding_is_success_without_stock(self):
        line = LineQuantities(ordered=10, allocated=10, available_now=0)
        assert rec.stock_severity(line) == "success"

    def test_shippable_is_capped_by_unshipped_demand(self):
        line = LineQuantities(ordered=10, allocated=2, shipped=3, available_now=50)
        assert rec.shippable_quantity(line) == 7

    def test_shippable_counts_the_lines_own_reservation(self):
        line = LineQuantities(ordered=10, allocated=10, available_now=0)
        assert rec.shippable_quantity(line) == 10

    def test_shippable_excludes_stock_already_in_fulfillment(self):
        line = LineQuantities(ordered=10, allocated=6, shipped=2, in_fulfillment=4, available_now=1)
        assert rec.shippable_quantity(line) == 3

    def test_shippable_is_capped_by_allocated_plus_available(self):
        line = LineQuantities(ordered=10, allocated=2, available_now=3)
        assert rec.shippable_quantity(line) == 5

    def test_shippable_ignores_negative_availability(self):
        line = LineQuantities(ordered=10, allocated=2, available_now=-4)
        assert rec.shippable_quantity(line) == 2


class TestLineAllocationHelpers:

    def test_can_unallocate_when_reserved_not_picked(self):
        assert rec.can_unallocate_line(LineQuantities(ordered=10, allocated=4, in_fulfillment=1))

    def test_cannot_unallocate_when_everything_is_in_fulfillment(self):
        assert not rec.can_unallocate_line(LineQuantities(ordered=10, allocated=4, in_fulfillment=4))

    def test_can_allocate_needs_remaining_demand_and_stock(self):
        line = LineQuantities(ordered=10, allocated=4, shipped=2, in_fulfillment=1, available_now=5)
        assert rec.can_allocate_line(line, "reserved")

    def test_cannot_allocate_on_draft_or_terminal(self):
        line = LineQuantities(ordered=10, available_now=5)
        assert not rec.can_allocate_line(line, "draft")
        assert not rec.can_allocate_line(line, "cancelled")
        assert not rec.can_allocate_line(line, "completed")

    def test_cannot_allocate_without_stock(self):
        assert not rec.can_allocate_line(LineQuantities(ordered=10, available_now=0), "confirmed")


class TestOrderAggregates:

    def test_fully_allocated(self):
        lines = [
            LineQuantities(ordered=10, allocated=7, shipped=3),
            LineQuantities(ordered=5, allocated=5),
        ]
        assert rec.is_fully_allocated(lines)

    def test_not_fully_allocated(self):
        lines = [LineQuantities(ordered=10, allocated=6, shipped=3)]
        assert not rec.is_fully_allocated(lines)

    def test_empty_order_is_not_fully_allocated(self):
        assert not rec.is_fully_allocated([])

    def test_has_allocated_items(self):
        assert rec.has_allocated_items([LineQuantities(ordered=1), LineQuantities(ordered=1, allocated=1)])
        assert not rec.has_allocated_items([LineQuantities(ordered=1)])

    def test_has_allocatable_stock(self):
        assert rec.has_allocatable_stock([LineQuantities(ordered=5, available_now=1)])
        assert not rec.has_allocatable_stock([LineQuantities(ordered=5, allocated=5, available_now=9)])

    def test_calculated_total(self):
        lines = [
            LineQuantities(ordered=3, unit_price=Decimal("2.50")),
            LineQuantities(ordered=2, unit_price=Decimal("10.00")),
        ]
        assert rec.calculated_total(lines) == Decimal("27.50")
