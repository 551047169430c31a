"""
Unit tests for the realtime merge into the sales order store.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from app.schemas.sales_order import SalesOrderFilters
from app.services.realtime import ChangeEvent, ChangeFeed, SalesOrderStore


def _order(order_id, status="draft", **fields):
    record = {
        "id": order_id,
        "order_number": f"SO-{order_id}",
        "status": status,
        "customer_id": None,
        "customer_name": "Acme",
        "total_amount": "10.00",
        "created_at": "2026-03-01T10:00:00",
    }
    record.update(fields)
    return record


def _event(event_type, new=None, old=None, table="sales_orders"):
    return ChangeEvent.from_payload({"eventType": event_type, "table": table, "new": new, "old": old})


@pytest.fixture
def store():
    store = SalesOrderStore()
    store.set_orders([_order("1"), _order("2")])
    return store


class TestApplyChange:

    def test_insert_goes_to_front(self, store):
        store.apply_change(_event("INSERT", new=_order("3")))
        assert [o["id"] for o in store.orders] == ["3", "1", "2"]

    def test_insert_of_known_id_replaces_instead_of_duplicating(self, store):
        store.apply_change(_event("INSERT", new=_order("1", status="confirmed")))
        assert [o["id"] for o in store.orders] == ["1", "2"]
        assert store.orders[0]["status"] == "confirmed"

    def test_update_replaces_whole_record(self, store):
        store.apply_change(_event("UPDATE", new={"id": "2", "status": "reserved"}))
        assert store.orders[1] == {"id": "2", "status": "reserved"}

    def test_update_of_unknown_id_is_inserted(self, store):
        store.apply_change(_event("UPDATE", new=_order("9", status="picking")))
        assert store.orders[0]["id"] == "9"

    def test_update_refreshes_current_order(self, store):
        store.set_current_order(_order("1"))
        store.apply_change(_event("UPDATE", new=_order("1", status="confirmed")))
        assert store.current_order["status"] == "confirmed"

    def test_delete_removes_and_clears_current(self, store):
        store.set_current_order(_order("2"))
        store.apply_change(_event("DELETE", old={"id": "2"}))
        assert [o["id"] for o in store.orders] == ["1"]
        assert store.current_order is None

    def test_delete_leaves_other_current_order(self, store):
        store.set_current_order(_order("1"))
        store.apply_change(_event("DELETE", old={"id": "2"}))
        assert store.current_order["id"] == "1"

    def test_last_message_wins(self, store):
        store.apply_change(_event("UPDATE", new=_order("1", status="reserved")))
        store.apply_change(_event("UPDATE", new=_order("1", status="confirmed")))
        assert store.orders[0]["status"] == "confirmed"

    def test_same_events_converge_regardless_of_start(self):
        events = [
            _event("INSERT", new=_order("5")),
            _event("UPDATE", new=_order("1", status="picking")),
            _event("DELETE", old={"id": "2"}),
        ]
        a, b = SalesOrderStore(), SalesOrderStore()
        a.set_orders([_order("1"), _order("2")])
        b.set_orders([_order("2", status="confirmed"), _order("1", status="reserved")])
        for store in (a, b):
            for event in events:
                store.apply_change(event)
        assert {o["id"]: o for o in a.orders} == {o["id"]: o for o in b.orders}

    def test_other_tables_are_ignored(self, store):
        store.apply_change(_event("DELETE", old={"id": "1"}, table="fulfillments"))
        assert len(store.orders) == 2

    def test_unknown_event_type(self):
        with pytest.raises(ValueError):
            ChangeEvent.from_payload({"eventType": "TRUNCATE", "table": "sales_orders"})

    def test_missing_table_means_sales_orders(self):
        event = ChangeEvent.from_payload({"eventType": "insert", "new": _order("9")})
        feed = ChangeFeed()
        received = []
        feed.subscribe("sales_orders", received.append)

        assert event.table == "sales_orders"
        assert feed.dispatch(event) == 1
        assert received == [event]

    def test_delete_without_id(self, store):
        with pytest.raises(ValueError):
            store.apply_change(_event("DELETE", old={}))


class TestPartialUpdate:

    def test_update_order_merges_fields(self, store):
        store.update_order("1", {"status": "confirmed"})
        assert store.orders[0]["status"] == "confirmed"
        assert store.orders[0]["customer_name"] == "Acme"


class TestViews:

    def test_filter_by_one_or_many_statuses(self):
        store = SalesOrderStore()
        store.set_orders([_order("1"), _order("2", status="confirmed"), _order("3", status="cancelled")])
        assert [o["id"] for o in store.filtered_orders(SalesOrderFilters(status="confirmed"))] == ["2"]
        many = store.filtered_orders(SalesOrderFilters(status="draft,cancelled"))
        assert [o["id"] for o in many] == ["1", "3"]

    def test_search_and_customer(self):
        store = SalesOrderStore()
        store.set_orders([
            _order("1", order_number="SO-1001", customer_id="c1"),
            _order("2", order_number="SO-2002", customer_id="c2"),
        ])
        assert [o["id"] for o in store.filtered_orders(SalesOrderFilters(search="so-2"))] == ["2"]
        assert [o["id"] for o in store.filtered_orders(SalesOrderFilters(customer="c1"))] == ["1"]

    def test_date_range(self):
        store = SalesOrderStore()
        store.set_orders([
            _order("1", created_at="2026-01-05T09:00:00Z"),
            _order("2", created_at="2026-02-05T09:00:00Z"),
        ])
        filters = SalesOrderFilters(date_from=datetime(2026, 2, 1), date_to=datetime(2026, 2, 28))
        assert [o["id"] for o in store.filtered_orders(filters)] == ["2"]

    def test_stats(self):
        store = SalesOrderStore()
        store.set_orders([
            _order("1", status="draft", total_amount="5.00"),
            _order("2", status="confirmed", total_amount="10.00"),
            _order("3", status="shipped", total_amount="20.00"),
            _order("4", status="cancelled", total_amount="40.00"),
            _order("5", status="reserved", total_amount="1.50"),
        ])
        stats = store.stats()
        assert stats.total_orders == 5
        assert stats.draft_orders == 1
        assert stats.confirmed_orders == 1
        assert stats.fulfilled_orders == 1
        assert stats.cancelled_orders == 1
        assert stats.total_revenue == Decimal("31.50")
        assert stats.pending_fulfillments == 2


class TestChangeFeed:

    def test_dispatch_by_table_and_event(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe("sales_orders", received.append, event="DELETE")
        assert feed.dispatch(_event("INSERT", new=_order("1"))) == 0
        assert feed.dispatch(_event("DELETE", old={"id": "1"})) == 1
        assert len(received) == 1

    def test_store_subscription(self):
        feed = ChangeFeed()
        store = SalesOrderStore()
        store.enable_realtime(feed)
        store.enable_realtime(feed)
        assert feed.dispatch(_event("INSERT", new=_order("1"))) == 1
        assert store.orders[0]["id"] == "1"
        store.disable_realtime(feed)
        assert feed.dispatch(_event("INSERT", new=_order("2"))) == 0
        assert not store.realtime_enabled
