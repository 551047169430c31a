"""
Fulfillment Endpoints

Fulfillments are created by the Fulfill Order action on a sales order. Here
they are listed and moved on: ship, cancel (stock goes back) and revert a
shipment.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.deps import get_order_actions
from app.db.session import get_db
from app.schemas.fulfillment import FulfillmentFilters, FulfillmentResponse, FulfillmentStats
from app.schemas.sales_order import ActionResult
from app.services.order_actions import OrderActionService
from app.services.sales_order_service import get_fulfillment, get_fulfillment_stats, list_fulfillments

router = APIRouter(prefix="/fulfillments", tags=["Fulfillments"])


@router.get("/", response_model=List[FulfillmentResponse])
async def get_fulfillments(
    skip: int = 0,
    limit: int = Query(50, ge=1, le=100),
    status: Optional[str] = None,
    sales_order_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    filters = FulfillmentFilters(status=status, sales_order_id=sales_order_id, search=search)
    return list_fulfillments(db, filters, skip=skip, limit=limit)


@router.get("/stats", response_model=FulfillmentStats)
async def fulfillment_stats(db: Session = Depends(get_db)):
    return get_fulfillment_stats(db)


@router.get("/{fulfillment_id}", response_model=FulfillmentResponse)
async def get_fulfillment_detail(fulfillment_id: str, db: Session = Depends(get_db)):
    return get_fulfillment(db, fulfillment_id)


@router.post("/{fulfillment_id}/ship", response_model=ActionResult)
async def ship_fulfillment(
    fulfillment_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    """Mark shipped and deduct inventory"""
    return actions.ship_fulfillment(fulfillment_id)


@router.post("/{fulfillment_id}/cancel", response_model=ActionResult)
async def cancel_fulfillment(
    fulfillment_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.cancel_fulfillment(fulfillment_id)


@router.post("/{fulfillment_id}/revert-shipment", response_model=ActionResult)
async def revert_fulfillment_shipment(
    fulfillment_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    """Undo a shipment; stock returns to the warehouse"""
    return actions.revert_fulfillment_shipment(fulfillment_id)
