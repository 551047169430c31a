"""
Order and fulfillment list queries.
"""
from typing import List, Optional

from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Session, joinedload

from app.core.status_config import get_status_severity
from app.exceptions import NotFoundError
from app.models.fulfillment import Fulfillment, FulfillmentLine
from app.models.sales_order import SalesOrder, SalesOrderLine
from app.schemas.fulfillment import (
    FulfillmentFilters,
    FulfillmentLineResponse,
    FulfillmentResponse,
    FulfillmentStats,
)
from app.schemas.sales_order import (
    SalesOrderFilters,
    SalesOrderListResponse,
    SalesOrderResponse,
    SalesStats,
)
from app.services.realtime import SalesOrderStore, compute_stats


def _apply_order_filters(query, filters: SalesOrderFilters):
    statuses = filters.statuses()
    if statuses:
        query = query.filter(SalesOrder.status.in_(statuses))
    if filters.customer:
        query = query.filter(SalesOrder.customer_id == filters.customer)
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.filter(or_(
            SalesOrder.order_number.ilike(pattern),
            SalesOrder.customer_name.ilike(pattern),
        ))
    if filters.date_from:
        query = query.filter(SalesOrder.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(SalesOrder.created_at <= filters.date_to)
    return query


def list_orders(
    db: Session,
    filters: SalesOrderFilters,
    skip: int = 0,
    limit: int = 50,
) -> List[SalesOrderListResponse]:
    """Newest first, with a line count per order"""
    line_counts = (
        db.query(SalesOrderLine.sales_order_id, func.count(SalesOrderLine.id).label("line_count"))
        .group_by(SalesOrderLine.sales_order_id)
        .subquery()
    )
    query = db.query(SalesOrder, func.coalesce(line_counts.c.line_count, 0)).outerjoin(
        line_counts, line_counts.c.sales_order_id == SalesOrder.id
    )
    rows = (
        _apply_order_filters(query, filters)
        .order_by(desc(SalesOrder.created_at))
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [
        SalesOrderListResponse(
            id=order.id,
            order_number=order.order_number,
            customer_name=order.customer_name,
            status=order.status,
            status_severity=get_status_severity(order.status),
            dispatch_date=order.dispatch_date,
            total_amount=order.total_amount,
            line_count=line_count,
            created_at=order.created_at,
        )
        for order, line_count in rows
    ]


def order_records(db: Session, filters: Optional[SalesOrderFilters] = None) -> List[dict]:
    """Order headers as plain rows, the shape change events carry"""
    query = db.query(SalesOrder)
    if filters:
        query = _apply_order_filters(query, filters)
    orders = query.order_by(desc(SalesOrder.created_at)).all()
    return [SalesOrderResponse.model_validate(o).model_dump(mode="json") for o in orders]


def get_sales_stats(db: Session) -> SalesStats:
    return compute_stats(order_records(db))


def refresh_store(db: Session, store: SalesOrderStore) -> int:
    """Reload the store from the database; returns the number of orders"""
    records = order_records(db)
    store.set_orders(records)
    if store.current_order:
        current = next((r for r in records if r["id"] == store.current_order.get("id")), None)
        store.set_current_order(current)
    return len(records)


# ============================================================================
# Fulfillments
# ============================================================================

def _fulfillment_response(fulfillment: Fulfillment) -> FulfillmentResponse:
    order = fulfillment.sales_order
    lines = []
    for fl in fulfillment.lines:
        so_line = fl.sales_order_line
        lines.append(FulfillmentLineResponse(
            id=fl.id,
            sales_order_line_id=fl.sales_order_line_id,
            location_id=fl.location_id,
            quantity=fl.quantity,
            sku=so_line.sku if so_line else None,
            product_name=so_line.product.name if so_line and so_line.product else None,
        ))
    return FulfillmentResponse(
        id=fulfillment.id,
        fulfillment_number=fulfillment.fulfillment_number,
        sales_order_id=fulfillment.sales_order_id,
        order_number=order.order_number if order else None,
        customer_name=order.customer_name if order else None,
        status=fulfillment.status,
        tracking_number=fulfillment.tracking_number,
        carrier=fulfillment.carrier,
        created_at=fulfillment.created_at,
        shipped_at=fulfillment.shipped_at,
        lines=lines,
    )


def list_fulfillments(
    db: Session,
    filters: FulfillmentFilters,
    skip: int = 0,
    limit: int = 50,
) -> List[FulfillmentResponse]:
    query = db.query(Fulfillment).options(
        joinedload(Fulfillment.sales_order),
        joinedload(Fulfillment.lines)
        .joinedload(FulfillmentLine.sales_order_line)
        .joinedload(SalesOrderLine.product),
    )
    if filters.status:
        query = query.filter(Fulfillment.status == filters.status)
    if filters.sales_order_id:
        query = query.filter(Fulfillment.sales_order_id == filters.sales_order_id)
    if filters.search:
        pattern = f"%{filters.search}%"
        query = query.join(SalesOrder, Fulfillment.sales_order_id == SalesOrder.id).filter(or_(
            Fulfillment.fulfillment_number.ilike(pattern),
            SalesOrder.order_number.ilike(pattern),
        ))
    fulfillments = (
        query.order_by(desc(Fulfillment.created_at))
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [_fulfillment_response(f) for f in fulfillments]


def get_fulfillment(db: Session, fulfillment_id: str) -> FulfillmentResponse:
    fulfillment = db.query(Fulfillment).filter(Fulfillment.id == fulfillment_id).first()
    if not fulfillment:
        raise NotFoundError("Fulfillment", fulfillment_id)
    return _fulfillment_response(fulfillment)


def get_fulfillment_stats(db: Session) -> FulfillmentStats:
    counts = dict(
        db.query(Fulfillment.status, func.count(Fulfillment.id))
        .group_by(Fulfillment.status)
        .all()
    )
    return FulfillmentStats(
        total_fulfillments=sum(counts.values()),
        draft_count=counts.get("draft", 0),
        picking_count=counts.get("picking", 0) + counts.get("packing", 0),
        packed_count=counts.get("packed", 0),
        shipped_count=counts.get("shipped", 0),
        cancelled_count=counts.get("cancelled", 0),
    )
