"""
Unit tests for pieces of the order services that need no HTTP client.
"""
from datetime import date

import pytest

from app.exceptions import ActionInProgressError
from app.schemas.sales_order import IncomingSupply
from app.services.order_actions import InFlightRegistry, next_order_number
from app.services.order_detail import suggest_dispatch_date
from app.services.reconciliation import LineQuantities
from tests.factories import create_test_sales_order, reset_sequences


def _supply(product_id, expected):
    return IncomingSupply(
        product_id=product_id, purchase_order_id="po", po_number="PO-1", quantity=5, expected_date=expected,
    )


class TestSuggestDispatchDate:

    def test_latest_arrival_among_short_lines(self):
        lines = [
            LineQuantities(ordered=5, available_now=0, line_id="l1"),
            LineQuantities(ordered=5, available_now=1, line_id="l2"),
            LineQuantities(ordered=5, available_now=9, line_id="l3"),
        ]
        products = {"l1": "p1", "l2": "p2", "l3": "p3"}
        incoming = {
            "p1": [_supply("p1", date(2026, 5, 1)), _supply("p1", date(2026, 6, 1))],
            "p2": [_supply("p2", date(2026, 5, 20))],
            "p3": [_supply("p3", date(2026, 9, 1))],
        }
        assert suggest_dispatch_date(lines, products, incoming) == date(2026, 5, 20)

    def test_everything_coverable(self):
        lines = [LineQuantities(ordered=5, available_now=5, line_id="l1")]
        assert suggest_dispatch_date(lines, {"l1": "p1"}, {}) is None

    def test_short_line_without_dated_supply(self):
        lines = [LineQuantities(ordered=5, line_id="l1")]
        incoming = {"p1": [_supply("p1", None)]}
        assert suggest_dispatch_date(lines, {"l1": "p1"}, incoming) is None


class TestInFlightRegistry:

    def test_second_action_on_same_order_is_rejected(self):
        registry = InFlightRegistry()
        with registry.processing("o1", "confirm"):
            assert registry.is_processing("o1")
            with pytest.raises(ActionInProgressError) as exc_info:
                with registry.processing("o1", "cancel"):
                    pass
            assert exc_info.value.details["action"] == "confirm"
        assert not registry.is_processing("o1")

    def test_other_orders_are_independent(self):
        registry = InFlightRegistry()
        with registry.processing("o1", "confirm"):
            with registry.processing("o2", "confirm"):
                assert registry.is_processing("o2")

    def test_released_after_error(self):
        registry = InFlightRegistry()
        with pytest.raises(RuntimeError):
            with registry.processing("o1", "fulfill"):
                raise RuntimeError("boom")
        assert not registry.is_processing("o1")


class TestOrderNumbers:

    def test_first_number(self, db_session):
        assert next_order_number(db_session) == "SO-1001"

    def test_ignores_foreign_numbers(self, db_session):
        reset_sequences()
        create_test_sales_order(db_session, order_number="SO-1007")
        create_test_sales_order(db_session, order_number="SO-SHOPIFY-88")
        assert next_order_number(db_session) == "SO-1008"
