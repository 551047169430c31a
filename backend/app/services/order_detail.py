"""
Order Detail Service

Builds the order detail document in one coordinated fetch:

1. order header and its fulfillments
2. lines with product (needs the order to exist)
3. per-line fulfillment quantities (get_line_fulfillment_qty)
4. stock positions and incoming supply, both filtered to exactly the
   product ids on the order

The result is rebuilt after every mutating action. Nothing is patched in
place from a mutation response.
"""
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from app.core.config import settings
from app.core.status_config import (
    OrderAction,
    get_status_severity,
    is_action_allowed,
)
from app.exceptions import NotFoundError
from app.logging_config import get_logger
from app.models.fulfillment import Fulfillment
from app.models.inventory import ProductInventory
from app.models.purchase_order import PurchaseOrder, PurchaseOrderLine
from app.models.sales_order import SalesOrder, SalesOrderLine
from app.schemas.sales_order import (
    FulfillmentSummary,
    IncomingSupply,
    LineProgress,
    OrderDetail,
    OrderDetailLine,
    OrderGates,
    SalesOrderResponse,
    StockPosition,
)
from app.services import reconciliation as rec
from app.services.allocation_gateway import AllocationGateway, LineFulfillmentQty, unwrap

logger = get_logger(__name__)


# ============================================================================
# Batched reads
# ============================================================================

def get_stock_positions(db: Session, product_ids: List[str]) -> Dict[str, StockPosition]:
    """Stock positions for the given products only. Empty input, no query."""
    if not product_ids:
        return {}
    rows = db.query(ProductInventory).filter(
        ProductInventory.product_id.in_(product_ids)
    ).all()
    return {
        row.product_id: StockPosition(
            product_id=row.product_id,
            qoh=row.qoh or 0,
            reserved=row.reserved or 0,
            available=row.available or 0,
            on_order=row.on_order or 0,
            net_required=row.net_required or 0,
        )
        for row in rows
    }


def get_incoming_supply(db: Session, product_ids: List[str]) -> Dict[str, List[IncomingSupply]]:
    """
    Open purchase order lines for the given products, earliest arrival first.

    Only purchase orders in an open status with quantity still to receive.
    """
    if not product_ids:
        return {}
    rows = (
        db.query(PurchaseOrderLine, PurchaseOrder)
        .join(PurchaseOrder, PurchaseOrderLine.purchase_order_id == PurchaseOrder.id)
        .filter(
            PurchaseOrderLine.product_id.in_(product_ids),
            PurchaseOrder.status.in_(settings.OPEN_PURCHASE_ORDER_STATUSES),
            PurchaseOrderLine.quantity_ordered > PurchaseOrderLine.quantity_received,
        )
        .all()
    )

    supply: Dict[str, List[IncomingSupply]] = {}
    for pol, po in rows:
        supply.setdefault(pol.product_id, []).append(IncomingSupply(
            product_id=pol.product_id,
            purchase_order_id=po.id,
            po_number=po.po_number,
            quantity=pol.quantity_outstanding,
            expected_date=po.expected_date,
        ))
    for entries in supply.values():
        entries.sort(key=lambda s: (s.expected_date is None, s.expected_date or date.max))
    return supply


def suggest_dispatch_date(
    lines: List[rec.LineQuantities],
    product_by_line: Dict[str, str],
    incoming: Dict[str, List[IncomingSupply]],
) -> Optional[date]:
    """
    Latest expected arrival among products that cannot be covered now.

    Returns None when every line is coverable now, or when a short line has
    no dated incoming supply (no date can be promised).
    """
    latest = None
    for line in lines:
        if rec.is_coverable_now(line):
            continue
        dated = [
            s.expected_date for s in incoming.get(product_by_line[line.line_id], [])
            if s.expected_date is not None
        ]
        if not dated:
            return None
        # earliest arrival that helps this line
        arrival = min(dated)
        if latest is None or arrival > latest:
            latest = arrival
    return latest


# ============================================================================
# Composition
# ============================================================================

def _line_quantities(
    line: SalesOrderLine,
    fulfillment_qty: Optional[LineFulfillmentQty],
    position: Optional[StockPosition],
) -> rec.LineQuantities:
    shipped = line.quantity_fulfilled or 0
    in_fulfillment = 0
    if fulfillment_qty is not None:
        shipped = fulfillment_qty.qty_shipped
        in_fulfillment = fulfillment_qty.qty_in_fulfillment
    return rec.LineQuantities(
        line_id=line.id,
        ordered=line.quantity_ordered or 0,
        allocated=line.quantity_allocated or 0,
        shipped=shipped,
        in_fulfillment=in_fulfillment,
        available_now=position.available if position else 0,
        unit_price=line.unit_price or Decimal("0"),
    )


def load_order_detail(db: Session, gateway: AllocationGateway, order_id: str) -> OrderDetail:
    """
    Fetch and compose the order detail.

    Raises:
        NotFoundError: order does not exist
        ProcedureError: get_line_fulfillment_qty failed
    """
    order = db.query(SalesOrder).filter(SalesOrder.id == order_id).first()
    if not order:
        raise NotFoundError("Sales order", order_id)

    fulfillments = (
        db.query(Fulfillment)
        .filter(Fulfillment.sales_order_id == order.id)
        .order_by(Fulfillment.created_at.desc())
        .all()
    )

    lines = (
        db.query(SalesOrderLine)
        .options(joinedload(SalesOrderLine.product))
        .filter(SalesOrderLine.sales_order_id == order.id)
        .order_by(SalesOrderLine.created_at, SalesOrderLine.id)
        .all()
    )

    fulfillment_qty: Dict[str, LineFulfillmentQty] = {}
    if lines:
        fulfillment_qty = unwrap(gateway.get_line_fulfillment_qty(order.id))

    product_ids = sorted({line.product_id for line in lines})
    positions = get_stock_positions(db, product_ids)
    incoming = get_incoming_supply(db, product_ids)

    quantities = [
        _line_quantities(line, fulfillment_qty.get(line.id), positions.get(line.product_id))
        for line in lines
    ]

    detail_lines = []
    anomalies: Dict[str, List[str]] = {}
    for line, qty in zip(lines, quantities):
        position = positions.get(line.product_id)
        line_anomalies = rec.find_anomalies(qty)
        if line_anomalies:
            anomalies[line.id] = line_anomalies
            logger.warning(
                "Order line quantities do not reconcile",
                extra={"order_id": order.id, "line_id": line.id, "anomalies": line_anomalies},
            )
        segments = rec.progress_segments(qty)
        detail_lines.append(OrderDetailLine(
            id=line.id,
            product_id=line.product_id,
            sku=line.sku or (line.product.sku if line.product else None),
            product_name=line.product.name if line.product else None,
            quantity_ordered=qty.ordered,
            quantity_allocated=qty.allocated,
            quantity_shipped=qty.shipped,
            quantity_in_fulfillment=qty.in_fulfillment,
            unit_price=qty.unit_price,
            line_total=Decimal(qty.ordered) * Decimal(str(qty.unit_price)),
            outstanding=rec.outstanding(qty),
            available_now=qty.available_now,
            on_order=position.on_order if position else 0,
            net_required=position.net_required if position else 0,
            coverable_now=rec.is_coverable_now(qty),
            stock_severity=rec.stock_severity(qty),
            shippable_quantity=rec.shippable_quantity(qty),
            can_allocate=rec.can_allocate_line(qty, order.status),
            can_unallocate=(
                is_action_allowed(order.status, OrderAction.UNALLOCATE_LINE)
                and rec.can_unallocate_line(qty)
            ),
            progress=LineProgress(**segments.as_percentages()),
            anomalies=line_anomalies,
            incoming=incoming.get(line.product_id, []),
        ))

    has_allocated = rec.has_allocated_items(quantities)
    nothing_committed = not has_allocated and not fulfillments
    gates = OrderGates(
        can_confirm=is_action_allowed(order.status, OrderAction.CONFIRM) and bool(lines),
        can_revert_to_draft=is_action_allowed(order.status, OrderAction.REVERT_TO_DRAFT) and nothing_committed,
        can_cancel=is_action_allowed(order.status, OrderAction.CANCEL) and nothing_committed,
        can_allocate=(
            is_action_allowed(order.status, OrderAction.ALLOCATE)
            and rec.has_allocatable_stock(quantities)
        ),
        can_fulfill=(
            is_action_allowed(order.status, OrderAction.FULFILL)
            and any(rec.shippable_quantity(q) > 0 for q in quantities)
        ),
        can_edit_lines=is_action_allowed(order.status, OrderAction.EDIT_LINES),
        can_add_lines=is_action_allowed(order.status, OrderAction.ADD_LINE),
        is_fully_allocated=rec.is_fully_allocated(quantities),
        has_allocated_items=has_allocated,
        has_allocatable_stock=rec.has_allocatable_stock(quantities),
        has_fulfillments=bool(fulfillments),
    )

    return OrderDetail(
        order=SalesOrderResponse.model_validate(order),
        status_severity=get_status_severity(order.status),
        lines=detail_lines,
        fulfillments=[FulfillmentSummary.model_validate(f) for f in fulfillments],
        gates=gates,
        calculated_total=rec.calculated_total(quantities),
        suggested_dispatch_date=suggest_dispatch_date(
            quantities, {line.id: line.product_id for line in lines}, incoming
        ),
        anomalies=anomalies,
    )
