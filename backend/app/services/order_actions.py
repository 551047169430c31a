"""
Sales Order Actions

The mutating side of the order detail: confirm, revert to draft, cancel,
allocate, fulfill, per-line allocate/unallocate and line edits.

Rules every action follows:
- local validation runs first and raises before any procedure is called
- allocation state is only ever changed by the procedures
- a rejection from a procedure is passed through verbatim
- no optimistic updates: every action ends by refetching the order
- one mutating action per order at a time (the ``processing`` flag)
"""
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.core.status_config import (
    OrderAction,
    SalesOrderStatus,
    is_fulfillment_action_allowed,
    validate_action,
)
from app.exceptions import (
    ActionInProgressError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.logging_config import get_logger
from app.models.fulfillment import Fulfillment
from app.models.product import Customer, Product
from app.models.sales_order import SalesOrder, SalesOrderLine
from app.schemas.sales_order import (
    ActionResult,
    OrderDetail,
    OrderDetailLine,
    SalesOrderCreate,
    SalesOrderLineCreate,
    SalesOrderLineEdit,
    SalesOrderUpdate,
)
from app.services.allocation_gateway import AllocationGateway, Err, FulfillmentItem, Outcome
from app.services.order_detail import load_order_detail

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "SO-"
FIRST_ORDER_NUMBER = 1001


class InFlightRegistry:
    """
    Orders with a mutating action still running.

    Only stops the same order from being acted on twice at once. At-most-once
    application of a procedure call is the idempotency key's job.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, str] = {}

    def is_processing(self, order_id: str) -> bool:
        with self._lock:
            return order_id in self._active

    @contextmanager
    def processing(self, order_id: str, action: str) -> Iterator[None]:
        with self._lock:
            if order_id in self._active:
                raise ActionInProgressError(order_id, action=self._active[order_id])
            self._active[order_id] = action
        try:
            yield
        finally:
            with self._lock:
                self._active.pop(order_id, None)


@dataclass
class _LineGuard:
    """Floors for a line's ordered quantity"""
    shipped: int
    in_fulfillment: int
    allocated: int


class OrderActionService:
    """Runs order actions against one database session"""

    def __init__(
        self,
        db: Session,
        gateway: AllocationGateway,
        in_flight: InFlightRegistry,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.in_flight = in_flight
        self.settings = settings or default_settings

    # ========================================================================
    # Helpers
    # ========================================================================

    def refetch(self, order_id: str) -> OrderDetail:
        # Drop identity-map state so the refetch sees what the procedures wrote
        self.db.expire_all()
        return load_order_detail(self.db, self.gateway, order_id)

    def _get_order(self, order_id: str) -> SalesOrder:
        order = self.db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
        if not order:
            raise NotFoundError("Sales order", order_id)
        return order

    def _get_line(self, order: SalesOrder, line_id: str) -> SalesOrderLine:
        line = self.db.query(SalesOrderLine).filter(
            SalesOrderLine.id == line_id,
            SalesOrderLine.sales_order_id == order.id,
        ).first()
        if not line:
            raise NotFoundError("Sales order line", line_id)
        return line

    @staticmethod
    def _detail_line(detail: OrderDetail, line_id: str) -> OrderDetailLine:
        for line in detail.lines:
            if line.id == line_id:
                return line
        raise NotFoundError("Sales order line", line_id)

    def _result(
        self,
        order_id: str,
        outcome: Outcome,
        success_message: str,
        failure_severity: str = "error",
    ) -> ActionResult:
        """Refetch and report. Err keeps the procedure's reason verbatim."""
        detail = self.refetch(order_id)
        if isinstance(outcome, Err):
            return ActionResult(
                success=False,
                severity=failure_severity,
                message=outcome.reason,
                detail=detail,
            )
        return ActionResult(success=True, severity="success", message=success_message, detail=detail)

    def _set_status(self, order: SalesOrder, new_status: str, **changes) -> None:
        """
        Conditional status write: only applies if nobody changed the status
        since it was read.
        """
        old_status = order.status
        changes.update(status=new_status, updated_at=datetime.utcnow())
        updated = self.db.query(SalesOrder).filter(
            SalesOrder.id == order.id,
            SalesOrder.status == old_status,
        ).update(changes, synchronize_session=False)
        if updated != 1:
            self.db.rollback()
            raise ConflictError(
                f"Order {order.order_number} changed while it was being updated",
                details={"order_id": order.id, "expected_status": old_status},
            )
        self.db.commit()
        logger.info(
            f"SO {order.order_number}: {old_status} → {new_status}",
            extra={"order_id": order.id},
        )

    def _ensure_nothing_committed(self, order: SalesOrder, detail: OrderDetail, action: str) -> None:
        """Revert and cancel need no allocated quantity and no fulfillments"""
        if detail.gates.has_allocated_items:
            raise InvalidStateError(
                f"Cannot {action} order {order.order_number}: stock is allocated. Unallocate all lines first.",
                current_state=order.status,
                details={"action": action, "reason": "allocated"},
            )
        if detail.gates.has_fulfillments:
            raise InvalidStateError(
                f"Cannot {action} order {order.order_number}: it has fulfillments.",
                current_state=order.status,
                details={"action": action, "reason": "fulfillments"},
            )

    def _recalculate_total(self, order: SalesOrder) -> None:
        total = self.db.query(
            func.coalesce(func.sum(SalesOrderLine.quantity_ordered * SalesOrderLine.unit_price), 0)
        ).filter(SalesOrderLine.sales_order_id == order.id).scalar()
        order.total_amount = Decimal(str(total or 0))

    # ========================================================================
    # Line edits
    # ========================================================================

    def _validate_edits(
        self, order: SalesOrder, detail: OrderDetail, edits: List[SalesOrderLineEdit]
    ) -> List[tuple]:
        """Check every edit before writing any of them"""
        validate_action(order.status, OrderAction.EDIT_LINES)
        planned = []
        for edit in edits:
            line = self._get_line(order, edit.line_id)
            if edit.quantity_ordered is not None:
                current = self._detail_line(detail, line.id)
                guard = _LineGuard(
                    shipped=current.quantity_shipped,
                    in_fulfillment=current.quantity_in_fulfillment,
                    allocated=current.quantity_allocated,
                )
                floor = guard.shipped + guard.in_fulfillment
                if edit.quantity_ordered < floor:
                    raise ValidationError(
                        f"Quantity cannot be less than {floor} (shipped {guard.shipped}, in fulfillment {guard.in_fulfillment})",
                        field="quantity_ordered",
                        value=edit.quantity_ordered,
                        details={"line_id": line.id, "minimum": floor},
                    )
                if edit.quantity_ordered < guard.shipped + guard.allocated:
                    raise ValidationError(
                        f"Quantity cannot be less than {guard.shipped + guard.allocated} while "
                        f"{guard.allocated} is allocated. Unallocate the line first.",
                        field="quantity_ordered",
                        value=edit.quantity_ordered,
                        details={"line_id": line.id, "minimum": guard.shipped + guard.allocated},
                    )
            planned.append((line, edit))
        return planned

    def _apply_edits(self, order: SalesOrder, planned: List[tuple]) -> None:
        for line, edit in planned:
            if edit.quantity_ordered is not None:
                line.quantity_ordered = edit.quantity_ordered
            if edit.unit_price is not None:
                line.unit_price = edit.unit_price
        self.db.flush()
        self._recalculate_total(order)
        self.db.commit()

    def save_line_edits(self, order_id: str, edits: List[SalesOrderLineEdit]) -> ActionResult:
        with self.in_flight.processing(order_id, "edit_lines"):
            order = self._get_order(order_id)
            detail = self.refetch(order_id)
            planned = self._validate_edits(order, detail, edits)
            self._apply_edits(order, planned)
            logger.info(
                f"Saved {len(planned)} line edit(s) on {order.order_number}",
                extra={"order_id": order.id},
            )
            return ActionResult(
                success=True,
                severity="success",
                message="Lines updated",
                detail=self.refetch(order_id),
            )

    def add_line(self, order_id: str, line_in: SalesOrderLineCreate) -> ActionResult:
        with self.in_flight.processing(order_id, "add_line"):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.ADD_LINE, "Lines can only be added to draft orders")
            product = self.db.query(Product).filter(Product.id == line_in.product_id).first()
            if not product:
                raise NotFoundError("Product", line_in.product_id)
            unit_price = line_in.unit_price
            if unit_price is None:
                unit_price = product.list_price or Decimal("0")
            self.db.add(SalesOrderLine(
                sales_order_id=order.id,
                product_id=product.id,
                sku=product.sku,
                quantity_ordered=line_in.quantity_ordered,
                quantity_allocated=0,
                quantity_fulfilled=0,
                unit_price=unit_price,
                notes=line_in.notes,
            ))
            self.db.flush()
            self._recalculate_total(order)
            self.db.commit()
            return ActionResult(
                success=True,
                severity="success",
                message=f"Added {product.sku}",
                detail=self.refetch(order_id),
            )

    def delete_line(self, order_id: str, line_id: str) -> ActionResult:
        with self.in_flight.processing(order_id, "delete_line"):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.DELETE_LINE, "Lines can only be deleted from draft orders")
            line = self._get_line(order, line_id)
            current = self._detail_line(self.refetch(order_id), line.id)
            if current.quantity_shipped > 0 or current.quantity_in_fulfillment > 0:
                raise ValidationError(
                    "Cannot delete a line that has shipped or is in a fulfillment",
                    details={"line_id": line.id},
                )
            if current.quantity_allocated > 0:
                raise ValidationError(
                    "Cannot delete a line with allocated stock. Unallocate it first.",
                    details={"line_id": line.id},
                )
            self.db.delete(line)
            self.db.flush()
            self._recalculate_total(order)
            self.db.commit()
            return ActionResult(
                success=True,
                severity="success",
                message="Line deleted",
                detail=self.refetch(order_id),
            )

    # ========================================================================
    # Order actions
    # ========================================================================

    def confirm(self, order_id: str, edits: Optional[List[SalesOrderLineEdit]] = None) -> ActionResult:
        """
        Confirm Order: save pending line edits, then allocate and confirm.

        The resulting status is whatever the procedure returns.
        """
        with self.in_flight.processing(order_id, OrderAction.CONFIRM.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.CONFIRM)
            detail = self.refetch(order_id)
            if not detail.lines:
                raise ValidationError("Add at least one line before confirming the order")

            if edits:
                planned = self._validate_edits(order, detail, edits)
                self._apply_edits(order, planned)

            outcome = self.gateway.allocate_and_confirm(order.id, self.settings.DEFAULT_CONFIRM_STATUS)
            message = f"Order confirmed ({outcome.value})" if outcome.ok else ""
            logger.info(
                f"Confirm {order.order_number}: {'ok' if outcome.ok else 'rejected'}",
                extra={"order_id": order.id, "action": "confirm"},
            )
            return self._result(order_id, outcome, message)

    def allocate(self, order_id: str) -> ActionResult:
        """Allocate Stock; safe to repeat, each attempt carries a new key"""
        with self.in_flight.processing(order_id, OrderAction.ALLOCATE.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.ALLOCATE)
            outcome = self.gateway.allocate_and_confirm(order.id, self.settings.ALLOCATE_STATUS)
            message = f"Stock allocated, order is now {outcome.value}" if outcome.ok else ""
            return self._result(order_id, outcome, message)

    def revert_to_draft(self, order_id: str) -> ActionResult:
        with self.in_flight.processing(order_id, OrderAction.REVERT_TO_DRAFT.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.REVERT_TO_DRAFT)
            self._ensure_nothing_committed(order, self.refetch(order_id), "revert")
            self._set_status(order, SalesOrderStatus.DRAFT.value, is_open=True)
            return ActionResult(
                success=True,
                severity="success",
                message="Order reverted to draft",
                detail=self.refetch(order_id),
            )

    def cancel(self, order_id: str, reason: Optional[str] = None) -> ActionResult:
        """Cancel the order. Irreversible."""
        with self.in_flight.processing(order_id, OrderAction.CANCEL.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.CANCEL)
            self._ensure_nothing_committed(order, self.refetch(order_id), "cancel")
            note = f"Cancelled: {reason}" if reason else "Cancelled"
            notes = f"{order.notes}\n{note}" if order.notes else note
            self._set_status(order, SalesOrderStatus.CANCELLED.value, is_open=False, notes=notes)
            return ActionResult(
                success=True,
                severity="success",
                message="Order cancelled",
                detail=self.refetch(order_id),
            )

    def fulfill(self, order_id: str) -> ActionResult:
        """
        Fulfill Order / Part-Ship.

        Ships min(outstanding, allocated + available now) per line. Lines with
        nothing shippable are left out; if none remain nothing is sent.
        """
        with self.in_flight.processing(order_id, OrderAction.FULFILL.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.FULFILL)
            detail = self.refetch(order_id)

            items = [
                FulfillmentItem(line_id=line.id, quantity=line.shippable_quantity)
                for line in detail.lines
                if line.shippable_quantity > 0
            ]
            if not items:
                return ActionResult(
                    success=False,
                    severity="info",
                    message="Nothing to ship",
                    detail=detail,
                )

            outcome = self.gateway.create_fulfillment(order.id, items)
            result = self._result(
                order_id,
                outcome,
                f"Fulfillment created for {sum(i.quantity for i in items)} unit(s)",
            )
            if outcome.ok:
                result.fulfillment_id = outcome.value
            return result

    def allocate_line(self, order_id: str, line_id: str) -> ActionResult:
        with self.in_flight.processing(order_id, OrderAction.ALLOCATE_LINE.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.ALLOCATE_LINE)
            line = self._detail_line(self.refetch(order_id), self._get_line(order, line_id).id)
            if not line.can_allocate:
                raise ValidationError(
                    "Nothing to allocate: the line is covered or no stock is available",
                    details={"line_id": line_id},
                )
            outcome = self.gateway.allocate_line(line_id)
            return self._result(
                order_id,
                outcome,
                (outcome.value if outcome.ok and outcome.value else "Line allocated"),
                failure_severity="warn",
            )

    def unallocate_line(self, order_id: str, line_id: str) -> ActionResult:
        with self.in_flight.processing(order_id, OrderAction.UNALLOCATE_LINE.value):
            order = self._get_order(order_id)
            validate_action(order.status, OrderAction.UNALLOCATE_LINE)
            line = self._detail_line(self.refetch(order_id), self._get_line(order, line_id).id)
            if not line.can_unallocate:
                raise ValidationError(
                    "Nothing to unallocate: all allocated stock is already in a fulfillment",
                    details={"line_id": line_id},
                )
            outcome = self.gateway.revert_line_allocation(line_id)
            return self._result(
                order_id,
                outcome,
                (outcome.value if outcome.ok and outcome.value else "Allocation released"),
                failure_severity="warn",
            )

    # ========================================================================
    # Fulfillment actions
    # ========================================================================

    def _fulfillment_action(self, fulfillment_id: str, action: str) -> ActionResult:
        fulfillment = self.db.query(Fulfillment).filter(Fulfillment.id == fulfillment_id).first()
        if not fulfillment:
            raise NotFoundError("Fulfillment", fulfillment_id)
        order_id = fulfillment.sales_order_id
        with self.in_flight.processing(order_id, f"fulfillment_{action}"):
            if not is_fulfillment_action_allowed(fulfillment.status, action):
                raise InvalidStateError(
                    f"Cannot {action.replace('_', ' ')} a fulfillment in status '{fulfillment.status}'",
                    current_state=fulfillment.status,
                    details={"fulfillment_id": fulfillment.id, "action": action},
                )
            calls = {
                "ship": (self.gateway.ship_fulfillment, "Shipped, inventory deducted"),
                "cancel": (self.gateway.cancel_fulfillment, "Fulfillment cancelled and stock returned"),
                "revert_shipment": (self.gateway.revert_fulfillment_shipment, "Shipment reverted, stock returned to warehouse"),
            }
            call, message = calls[action]
            result = self._result(order_id, call(fulfillment.id), message)
            result.fulfillment_id = fulfillment.id
            return result

    def ship_fulfillment(self, fulfillment_id: str) -> ActionResult:
        return self._fulfillment_action(fulfillment_id, "ship")

    def cancel_fulfillment(self, fulfillment_id: str) -> ActionResult:
        return self._fulfillment_action(fulfillment_id, "cancel")

    def revert_fulfillment_shipment(self, fulfillment_id: str) -> ActionResult:
        return self._fulfillment_action(fulfillment_id, "revert_shipment")


# ============================================================================
# Order creation and header updates
# ============================================================================

def next_order_number(db: Session) -> str:
    """SO-1001, SO-1002, ... after the highest existing number"""
    numbers = db.query(SalesOrder.order_number).filter(
        SalesOrder.order_number.like(f"{ORDER_NUMBER_PREFIX}%")
    ).all()
    highest = FIRST_ORDER_NUMBER - 1
    for (number,) in numbers:
        suffix = number[len(ORDER_NUMBER_PREFIX):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{ORDER_NUMBER_PREFIX}{highest + 1}"


def create_order(db: Session, order_in: SalesOrderCreate) -> SalesOrder:
    """
    Create a draft order.

    Customer addresses are copied onto the order; later changes to the
    customer do not reach existing orders.
    """
    customer = None
    if order_in.customer_id:
        customer = db.query(Customer).filter(Customer.id == order_in.customer_id).first()
        if not customer:
            raise NotFoundError("Customer", order_in.customer_id)

    order = SalesOrder(
        order_number=next_order_number(db),
        customer_id=customer.id if customer else None,
        customer_name=order_in.customer_name or (customer.name if customer else None),
        status=SalesOrderStatus.DRAFT.value,
        is_open=True,
        billing_address=order_in.billing_address or (dict(customer.billing_address) if customer and customer.billing_address else None),
        shipping_address=order_in.shipping_address or (dict(customer.shipping_address) if customer and customer.shipping_address else None),
        shipping_method=order_in.shipping_method,
        dispatch_date=order_in.dispatch_date,
        notes=order_in.notes,
        source="manual",
    )
    db.add(order)
    db.flush()

    total = Decimal("0")
    for line_in in order_in.lines:
        product = db.query(Product).filter(Product.id == line_in.product_id).first()
        if not product:
            db.rollback()
            raise NotFoundError("Product", line_in.product_id)
        unit_price = line_in.unit_price if line_in.unit_price is not None else (product.list_price or Decimal("0"))
        db.add(SalesOrderLine(
            sales_order_id=order.id,
            product_id=product.id,
            sku=product.sku,
            quantity_ordered=line_in.quantity_ordered,
            quantity_allocated=0,
            quantity_fulfilled=0,
            unit_price=unit_price,
            notes=line_in.notes,
        ))
        total += Decimal(line_in.quantity_ordered) * Decimal(str(unit_price))

    order.total_amount = total
    db.commit()
    db.refresh(order)
    logger.info(f"Created sales order {order.order_number}", extra={"order_id": order.id})
    return order


def update_order_header(db: Session, order_id: str, update: SalesOrderUpdate) -> SalesOrder:
    order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Sales order", order_id)
    if order.status in (SalesOrderStatus.COMPLETED.value, SalesOrderStatus.CANCELLED.value):
        raise InvalidStateError(
            f"Cannot edit order in status '{order.status}'",
            current_state=order.status,
        )
    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(order, field, value)
    db.commit()
    db.refresh(order)
    return order
