"""
Sales Order Endpoints

Order list, order detail and the gated order actions. Every action responds
with the order detail as refetched after the action ran.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.v1.deps import get_gateway, get_order_actions
from app.core.status_config import (
    OrderAction,
    SalesOrderStatus,
    get_allowed_states,
    get_available_actions,
    get_status_severity,
)
from app.db.session import get_db
from app.logging_config import get_logger
from app.schemas.sales_order import (
    ActionResult,
    OrderDetail,
    SalesOrderCancel,
    SalesOrderCreate,
    SalesOrderFilters,
    SalesOrderLineCreate,
    SalesOrderLineEdits,
    SalesOrderListResponse,
    SalesStats,
    SalesOrderUpdate,
)
from app.services.allocation_gateway import AllocationGateway
from app.services.order_actions import OrderActionService, create_order, update_order_header
from app.services.order_detail import load_order_detail
from app.services.sales_order_service import get_sales_stats, list_orders

logger = get_logger(__name__)

router = APIRouter(prefix="/sales-orders", tags=["Sales Orders"])


# ============================================================================
# ENDPOINT: Status metadata
# ============================================================================

@router.get("/status-transitions")
async def get_sales_order_status_transitions(
    current_status: Optional[str] = None,
):
    """
    Get the action gating table.

    Without ``current_status`` returns every status with its severity and the
    actions offered in it. With it, only that status.
    """
    if current_status:
        return {
            "current_status": current_status,
            "severity": get_status_severity(current_status),
            "available_actions": get_available_actions(current_status),
        }
    return {
        "statuses": [
            {
                "status": s.value,
                "severity": get_status_severity(s.value),
                "available_actions": get_available_actions(s.value),
            }
            for s in SalesOrderStatus
        ],
        "actions": {a.value: get_allowed_states(a) for a in OrderAction},
    }


# ============================================================================
# ENDPOINT: List / stats / create
# ============================================================================

@router.get("/", response_model=List[SalesOrderListResponse])
async def list_sales_orders(
    skip: int = 0,
    limit: int = Query(50, ge=1, le=100),
    status: Optional[List[str]] = Query(None),
    customer: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    """
    List sales orders, newest first.

    ``status`` can be repeated or comma separated.
    """
    if status and len(status) == 1:
        status = status[0]
    filters = SalesOrderFilters(
        status=status,
        customer=customer,
        search=search,
        date_from=date_from,
        date_to=date_to,
    )
    return list_orders(db, filters, skip=skip, limit=limit)


@router.get("/stats", response_model=SalesStats)
async def sales_order_stats(db: Session = Depends(get_db)):
    return get_sales_stats(db)


@router.post("/", response_model=OrderDetail, status_code=status.HTTP_201_CREATED)
async def create_sales_order(
    order_in: SalesOrderCreate,
    db: Session = Depends(get_db),
    gateway: AllocationGateway = Depends(get_gateway),
):
    """Create a draft order and return its detail"""
    order = create_order(db, order_in)
    return load_order_detail(db, gateway, order.id)


# ============================================================================
# ENDPOINT: Detail and header updates
# ============================================================================

@router.get("/{order_id}", response_model=OrderDetail)
async def get_sales_order_detail(
    order_id: str,
    db: Session = Depends(get_db),
    gateway: AllocationGateway = Depends(get_gateway),
):
    """
    Composed order detail: header, lines with quantities and stock,
    fulfillments, action gates and suggested dispatch date.
    """
    return load_order_detail(db, gateway, order_id)


@router.patch("/{order_id}", response_model=OrderDetail)
async def update_sales_order(
    order_id: str,
    update: SalesOrderUpdate,
    db: Session = Depends(get_db),
    gateway: AllocationGateway = Depends(get_gateway),
):
    update_order_header(db, order_id, update)
    return load_order_detail(db, gateway, order_id)


# ============================================================================
# ENDPOINT: Lines
# ============================================================================

@router.patch("/{order_id}/lines", response_model=ActionResult)
async def save_line_edits(
    order_id: str,
    payload: SalesOrderLineEdits,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.save_line_edits(order_id, payload.edits)


@router.post("/{order_id}/lines", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
async def add_line(
    order_id: str,
    line_in: SalesOrderLineCreate,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.add_line(order_id, line_in)


@router.delete("/{order_id}/lines/{line_id}", response_model=ActionResult)
async def delete_line(
    order_id: str,
    line_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.delete_line(order_id, line_id)


@router.post("/{order_id}/lines/{line_id}/allocate", response_model=ActionResult)
async def allocate_line(
    order_id: str,
    line_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.allocate_line(order_id, line_id)


@router.post("/{order_id}/lines/{line_id}/unallocate", response_model=ActionResult)
async def unallocate_line(
    order_id: str,
    line_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.unallocate_line(order_id, line_id)


# ============================================================================
# ENDPOINT: Order actions
# ============================================================================

@router.post("/{order_id}/confirm", response_model=ActionResult)
async def confirm_sales_order(
    order_id: str,
    payload: Optional[SalesOrderLineEdits] = None,
    actions: OrderActionService = Depends(get_order_actions),
):
    """
    Confirm Order.

    Pending line edits in the body are saved first; allocation runs only
    after they are stored.
    """
    return actions.confirm(order_id, payload.edits if payload else None)


@router.post("/{order_id}/revert-to-draft", response_model=ActionResult)
async def revert_sales_order_to_draft(
    order_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.revert_to_draft(order_id)


@router.post("/{order_id}/cancel", response_model=ActionResult)
async def cancel_sales_order(
    order_id: str,
    payload: Optional[SalesOrderCancel] = None,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.cancel(order_id, payload.cancellation_reason if payload else None)


@router.post("/{order_id}/allocate", response_model=ActionResult)
async def allocate_sales_order(
    order_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    return actions.allocate(order_id)


@router.post("/{order_id}/fulfill", response_model=ActionResult)
async def fulfill_sales_order(
    order_id: str,
    actions: OrderActionService = Depends(get_order_actions),
):
    """Fulfill Order / Part-Ship whatever is shippable now"""
    return actions.fulfill(order_id)
