"""
Unit tests for the allocation gateway: result normalization and
idempotency keys.
"""
import uuid

import pytest
from sqlalchemy.exc import DBAPIError

from app.exceptions import ProcedureError
from app.services.allocation_gateway import (
    ALLOCATE_AND_CONFIRM,
    CREATE_FULFILLMENT,
    GET_LINE_FULFILLMENT_QTY,
    AllocationGateway,
    Err,
    FulfillmentItem,
    LineFulfillmentQty,
    Ok,
    SqlProcedureCaller,
    unwrap,
)


class TestAllocateAndConfirm:

    def test_ok_carries_returned_status(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_inventory_and_confirm_order", {"status": "awaiting_stock"})
        outcome = gateway.allocate_and_confirm("order-1", "confirmed")
        assert outcome == Ok("awaiting_stock")
        assert outcome.refetch_needed

    def test_params_and_fresh_key(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_inventory_and_confirm_order", {"status": "reserved"})
        gateway.allocate_and_confirm("order-1", "confirmed")
        name, params = fake_procedures.calls[0]
        assert name == "allocate_inventory_and_confirm_order"
        assert params["p_order_id"] == "order-1"
        assert params["p_new_status"] == "confirmed"
        uuid.UUID(params["p_idempotency_key"], version=4)

    def test_json_string_result_is_decoded(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_inventory_and_confirm_order", '{"status": "reserved"}')
        assert gateway.allocate_and_confirm("order-1", "confirmed") == Ok("reserved")

    def test_missing_status_is_err(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_inventory_and_confirm_order", {"ok": True})
        outcome = gateway.allocate_and_confirm("order-1", "confirmed")
        assert isinstance(outcome, Err)
        assert "missing status" in outcome.reason

    def test_success_false_is_err_with_message(self, gateway, fake_procedures):
        fake_procedures.respond(
            "allocate_inventory_and_confirm_order",
            {"success": False, "message": "Order is locked by another process"},
        )
        outcome = gateway.allocate_and_confirm("order-1", "confirmed")
        assert outcome == Err("Order is locked by another process", ALLOCATE_AND_CONFIRM.name)

    def test_raised_error_and_rejection_look_the_same(self, gateway, fake_procedures):
        fake_procedures.respond(
            "allocate_inventory_and_confirm_order",
            DBAPIError("SELECT ...", {}, Exception("Insufficient stock for SKU-1\nCONTEXT: ...")),
        )
        outcome = gateway.allocate_and_confirm("order-1", "confirmed")
        assert isinstance(outcome, Err)
        assert outcome.reason == "Insufficient stock for SKU-1"
        assert not outcome.ok


class TestIdempotencyKeys:

    def test_each_attempt_gets_a_new_key(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_line_item", {"success": True})
        gateway.allocate_line("line-1")
        gateway.allocate_line("line-1")
        keys = [params["p_idempotency_key"] for _, params in fake_procedures.calls]
        assert len(set(keys)) == 2

    def test_key_factory_is_used(self, fake_procedures):
        gateway = AllocationGateway(fake_procedures, key_factory=lambda: "fixed-key")
        fake_procedures.respond("revert_line_allocation", {"success": True})
        gateway.revert_line_allocation("line-1")
        assert fake_procedures.calls[0][1]["p_idempotency_key"] == "fixed-key"

    def test_read_procedure_has_no_key(self, gateway, fake_procedures):
        gateway.get_line_fulfillment_qty("order-1")
        assert "p_idempotency_key" not in fake_procedures.calls[0][1]


class TestLineAllocation:

    def test_success_with_message(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_line_item", {"success": True, "message": "Allocated 4"})
        assert gateway.allocate_line("line-1") == Ok("Allocated 4")

    def test_rejection_message_is_verbatim(self, gateway, fake_procedures):
        fake_procedures.respond("allocate_line_item", {"success": False, "message": "No stock available"})
        assert gateway.allocate_line("line-1").reason == "No stock available"

    def test_unexpected_shape_is_err(self, gateway, fake_procedures):
        fake_procedures.respond("revert_line_allocation", None)
        assert isinstance(gateway.revert_line_allocation("line-1"), Err)


class TestCreateFulfillment:

    def test_returns_fulfillment_id(self, gateway, fake_procedures):
        fake_procedures.respond("create_fulfillment_and_reallocate", "ful-1")
        outcome = gateway.create_fulfillment("order-1", [FulfillmentItem("line-1", 3)])
        assert outcome == Ok("ful-1")
        _, params = fake_procedures.calls[0]
        assert params["p_items"] == [{"sales_order_line_id": "line-1", "quantity": 3}]

    def test_object_result(self, gateway, fake_procedures):
        fake_procedures.respond("create_fulfillment_and_reallocate", {"fulfillment_id": "ful-2"})
        assert gateway.create_fulfillment("order-1", [FulfillmentItem("l", 1)]) == Ok("ful-2")

    def test_no_items_never_calls(self, gateway, fake_procedures):
        outcome = gateway.create_fulfillment("order-1", [])
        assert outcome == Err("No items to fulfill", CREATE_FULFILLMENT.name)
        assert fake_procedures.calls == []


class TestFulfillmentActions:

    def test_lenient_ack_accepts_empty_result(self, gateway, fake_procedures):
        fake_procedures.respond("process_fulfillment_shipment", None)
        assert gateway.ship_fulfillment("ful-1").ok

    def test_cancel_rejection(self, gateway, fake_procedures):
        fake_procedures.respond(
            "cancel_fulfillment_and_return_stock",
            {"success": False, "message": "Fulfillment already shipped"},
        )
        assert gateway.cancel_fulfillment("ful-1").reason == "Fulfillment already shipped"


class TestLineFulfillmentQty:

    def test_rows_are_keyed_by_line(self, gateway, fake_procedures):
        fake_procedures.respond("get_line_fulfillment_qty", [
            {"line_id": "a", "qty_in_fulfillment": 2, "qty_shipped": 1},
            {"line_id": "b", "qty_in_fulfillment": None, "qty_shipped": 5},
        ])
        outcome = gateway.get_line_fulfillment_qty("order-1")
        assert outcome.value == {
            "a": LineFulfillmentQty("a", 2, 1),
            "b": LineFulfillmentQty("b", 0, 5),
        }
        assert outcome.refetch_needed is False

    def test_none_is_empty(self, gateway, fake_procedures):
        fake_procedures.respond("get_line_fulfillment_qty", None)
        assert gateway.get_line_fulfillment_qty("order-1").value == {}

    def test_malformed_row_is_err(self, gateway, fake_procedures):
        fake_procedures.respond("get_line_fulfillment_qty", [{"qty_shipped": 1}])
        outcome = gateway.get_line_fulfillment_qty("order-1")
        assert outcome == Err(
            f"Unexpected row from {GET_LINE_FULFILLMENT_QTY.name}", GET_LINE_FULFILLMENT_QTY.name
        )

    def test_unwrap_raises_procedure_error(self, gateway, fake_procedures):
        fake_procedures.respond("get_line_fulfillment_qty", RuntimeError("connection reset"))
        with pytest.raises(ProcedureError) as exc_info:
            unwrap(gateway.get_line_fulfillment_qty("order-1"))
        assert exc_info.value.message == "connection reset"
        assert exc_info.value.procedure == GET_LINE_FULFILLMENT_QTY.name


class TestSqlProcedureCaller:

    def test_scalar_call_sql(self):
        sql = SqlProcedureCaller.build_sql(ALLOCATE_AND_CONFIRM)
        assert sql == (
            "SELECT allocate_inventory_and_confirm_order("
            "CAST(:p_order_id AS uuid), CAST(:p_new_status AS text), "
            "CAST(:p_idempotency_key AS uuid)) AS result"
        )

    def test_set_returning_call_sql(self):
        assert SqlProcedureCaller.build_sql(GET_LINE_FULFILLMENT_QTY) == (
            "SELECT * FROM get_line_fulfillment_qty(CAST(:p_order_id AS uuid))"
        )
