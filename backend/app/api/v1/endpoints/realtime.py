"""
Realtime Endpoints

Change events from the database are posted to the webhook and merged into
the shared sales order store; the UI reads the merged list from here.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.deps import get_change_feed, get_sales_store, verify_webhook_secret
from app.db.session import get_db
from app.exceptions import ValidationError
from app.logging_config import get_logger
from app.schemas.sales_order import SalesOrderFilters, SalesStats
from app.services.realtime import ChangeEvent, ChangeFeed, SalesOrderStore
from app.services.sales_order_service import refresh_store

logger = get_logger(__name__)

router = APIRouter(prefix="/realtime", tags=["Realtime"])


@router.post("/changes", dependencies=[Depends(verify_webhook_secret)])
async def receive_change(
    payload: Dict[str, Any],
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Receive one row-level change event.

    Body: ``{"eventType": "INSERT|UPDATE|DELETE", "table": ..., "new": {...}, "old": {...}}``
    """
    try:
        event = ChangeEvent.from_payload(payload)
    except ValueError as e:
        raise ValidationError(str(e), field="eventType")
    try:
        delivered = feed.dispatch(event)
    except ValueError as e:
        raise ValidationError(str(e))
    logger.info(
        f"Change event {event.event_type} on {event.table}",
        extra={"table": event.table, "delivered": delivered},
    )
    return {"accepted": True, "delivered": delivered}


@router.get("/sales-orders")
async def get_store_orders(
    status: Optional[List[str]] = Query(None),
    customer: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    store: SalesOrderStore = Depends(get_sales_store),
):
    """Merged order list, filtered like the store does it"""
    if status and len(status) == 1:
        status = status[0]
    filters = SalesOrderFilters(
        status=status,
        customer=customer,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    return {
        "orders": store.filtered_orders(filters),
        "current_order": store.current_order,
        "realtime_enabled": store.realtime_enabled,
    }


@router.get("/sales-orders/stats", response_model=SalesStats)
async def get_store_stats(store: SalesOrderStore = Depends(get_sales_store)):
    return store.stats()


@router.post("/sales-orders/refresh")
async def refresh_store_orders(
    db: Session = Depends(get_db),
    store: SalesOrderStore = Depends(get_sales_store),
):
    """Reload the store from the database"""
    count = refresh_store(db, store)
    return {"orders": count}


@router.put("/sales-orders/current/{order_id}")
async def set_current_order(
    order_id: str,
    store: SalesOrderStore = Depends(get_sales_store),
):
    """Track the order open in the detail view so change events reach it"""
    current = next((o for o in store.orders if o.get("id") == order_id), None)
    store.set_current_order(current or {"id": order_id})
    return {"current_order": store.current_order}
