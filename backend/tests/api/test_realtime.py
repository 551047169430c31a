"""
Tests for the realtime webhook and the merged order list
"""
import pytest

from app.core.config import settings
from app.services.sales_order_service import order_records
from tests.factories import create_test_sales_order, reset_sequences


def _change(event_type, new=None, old=None):
    return {"eventType": event_type, "table": "sales_orders", "new": new, "old": old}


class TestRealtimeEndpoints:

    @pytest.fixture(autouse=True)
    def setup(self, db_session):
        reset_sequences()

    def test_refresh_then_merge_changes(self, client, db_session):
        order = create_test_sales_order(db_session, status="draft")

        assert client.post("/api/v1/realtime/sales-orders/refresh").json() == {"orders": 1}

        client.post("/api/v1/realtime/changes", json=_change(
            "UPDATE", new={"id": order.id, "order_number": order.order_number, "status": "confirmed"},
        ))
        client.post("/api/v1/realtime/changes", json=_change(
            "INSERT", new={"id": "remote-1", "order_number": "SO-9001", "status": "draft"},
        ))

        orders = client.get("/api/v1/realtime/sales-orders").json()["orders"]
        assert [o["id"] for o in orders] == ["remote-1", order.id]
        assert orders[1]["status"] == "confirmed"

        drafts = client.get("/api/v1/realtime/sales-orders", params={"status": "draft"}).json()["orders"]
        assert [o["id"] for o in drafts] == ["remote-1"]

    def test_delete_clears_current_order(self, client, db_session):
        client.post("/api/v1/realtime/changes", json=_change("INSERT", new={"id": "a", "status": "draft"}))
        client.put("/api/v1/realtime/sales-orders/current/a")

        client.post("/api/v1/realtime/changes", json=_change("DELETE", old={"id": "a"}))

        data = client.get("/api/v1/realtime/sales-orders").json()
        assert data["orders"] == []
        assert data["current_order"] is None

    def test_store_stats(self, client):
        client.post("/api/v1/realtime/changes", json=_change("INSERT", new={"id": "a", "status": "draft"}))
        client.post("/api/v1/realtime/changes", json=_change(
            "INSERT", new={"id": "b", "status": "confirmed", "total_amount": "12.50"},
        ))

        stats = client.get("/api/v1/realtime/sales-orders/stats").json()

        assert stats["total_orders"] == 2
        assert stats["draft_orders"] == 1
        assert stats["pending_fulfillments"] == 1

    def test_bad_event_is_rejected(self, client):
        response = client.post("/api/v1/realtime/changes", json={"eventType": "MERGE", "table": "sales_orders"})
        assert response.status_code == 400

    def test_secret_is_enforced(self, client, monkeypatch):
        monkeypatch.setattr(settings, "REALTIME_WEBHOOK_SECRET", "s3cret")
        event = _change("INSERT", new={"id": "a", "status": "draft"})

        denied = client.post("/api/v1/realtime/changes", json=event)
        allowed = client.post("/api/v1/realtime/changes", json=event, headers={"X-Webhook-Secret": "s3cret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200
        assert allowed.json()["delivered"] == 1

    def test_wrong_secret_is_rejected(self, client, monkeypatch):
        monkeypatch.setattr(settings, "REALTIME_WEBHOOK_SECRET", "s3cret")
        event = _change("INSERT", new={"id": "a", "status": "draft"})

        response = client.post("/api/v1/realtime/changes", json=event, headers={"X-Webhook-Secret": "s3cres"})

        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    def test_event_without_table_reaches_the_store(self, client):
        response = client.post(
            "/api/v1/realtime/changes",
            json={"eventType": "INSERT", "new": {"id": "a", "status": "draft"}},
        )

        assert response.json()["delivered"] == 1
        assert [o["id"] for o in client.get("/api/v1/realtime/sales-orders").json()["orders"]] == ["a"]

    def test_out_of_order_events_converge_after_refetch(self, client, db_session):
        first = create_test_sales_order(db_session, status="draft")
        second = create_test_sales_order(db_session, status="reserved")
        client.post("/api/v1/realtime/sales-orders/refresh")

        # Newer state arrives before the stale one
        client.post("/api/v1/realtime/changes", json=_change(
            "UPDATE", new={"id": second.id, "order_number": second.order_number, "status": "shipped"},
        ))
        client.post("/api/v1/realtime/changes", json=_change(
            "UPDATE", new={"id": second.id, "order_number": second.order_number, "status": "confirmed"},
        ))
        client.post("/api/v1/realtime/changes", json=_change(
            "INSERT", new={"id": "never-persisted", "order_number": "SO-9999", "status": "draft"},
        ))
        client.post("/api/v1/realtime/changes", json=_change("DELETE", old={"id": first.id}))
        drifted = client.get("/api/v1/realtime/sales-orders").json()["orders"]
        assert {o["id"] for o in drifted} == {"never-persisted", second.id}

        assert client.post("/api/v1/realtime/sales-orders/refresh").json() == {"orders": 2}

        orders = client.get("/api/v1/realtime/sales-orders").json()["orders"]
        persisted = order_records(db_session)
        assert {o["id"]: o["status"] for o in orders} == {first.id: "draft", second.id: "reserved"}
        assert {o["id"]: o for o in orders} == {r["id"]: r for r in persisted}
