"""
Sales Order Pydantic Schemas
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional, Union
from datetime import date, datetime
from decimal import Decimal


# ============================================================================
# Request Schemas
# ============================================================================

class SalesOrderLineCreate(BaseModel):
    """Line item for order creation"""
    product_id: str = Field(..., description="Product ID")
    quantity_ordered: int = Field(..., gt=0, le=100000, description="Quantity ordered")
    unit_price: Optional[Decimal] = Field(None, ge=0, description="Unit price (uses product list price if not specified)")
    notes: Optional[str] = Field(None, max_length=500)


class SalesOrderCreate(BaseModel):
    """Create a draft sales order"""
    lines: List[SalesOrderLineCreate] = Field(default_factory=list, description="Order lines")

    customer_id: Optional[str] = Field(None, description="Customer ID; its addresses are snapshotted")
    customer_name: Optional[str] = Field(None, max_length=255)
    billing_address: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_method: Optional[str] = Field(None, max_length=100)
    dispatch_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=5000)


class SalesOrderLineEdit(BaseModel):
    """Pending edit to an existing line"""
    line_id: str
    quantity_ordered: Optional[int] = Field(None, gt=0, le=100000)
    unit_price: Optional[Decimal] = Field(None, ge=0)


class SalesOrderLineEdits(BaseModel):
    """Line edits saved on their own or sent along with Confirm Order"""
    edits: List[SalesOrderLineEdit] = Field(default_factory=list)


class SalesOrderUpdate(BaseModel):
    """Header fields that can change outside the allocation flow"""
    dispatch_date: Optional[date] = None
    shipping_method: Optional[str] = Field(None, max_length=100)
    tracking_number: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=5000)


class SalesOrderCancel(BaseModel):
    """Request to cancel an order"""
    cancellation_reason: Optional[str] = Field(None, max_length=500)


class SalesOrderFilters(BaseModel):
    """Order list filters"""
    search: Optional[str] = None
    status: Optional[Union[str, List[str]]] = None
    customer: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def split_status(cls, v):
        if isinstance(v, str) and "," in v:
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    def statuses(self) -> List[str]:
        if not self.status:
            return []
        return [self.status] if isinstance(self.status, str) else list(self.status)


# ============================================================================
# Response Schemas
# ============================================================================

class SalesOrderResponse(BaseModel):
    """Sales order header"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    is_open: Optional[bool] = None
    billing_address: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_method: Optional[str] = None
    tracking_number: Optional[str] = None
    dispatch_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    source: Optional[str] = None
    shopify_order_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None


class SalesOrderListResponse(BaseModel):
    """Order list row with line counts"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    customer_name: Optional[str] = None
    status: str
    status_severity: str
    dispatch_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    line_count: int = 0
    created_at: datetime


class SalesStats(BaseModel):
    total_orders: int = 0
    draft_orders: int = 0
    confirmed_orders: int = 0
    fulfilled_orders: int = 0
    cancelled_orders: int = 0
    total_revenue: Decimal = Decimal("0")
    pending_fulfillments: int = 0


# ============================================================================
# Order Detail
# ============================================================================

class StockPosition(BaseModel):
    """Stock position of one product, read from product_inventory_view"""
    product_id: str
    qoh: int = 0
    reserved: int = 0
    available: int = 0
    on_order: int = 0
    net_required: int = 0


class IncomingSupply(BaseModel):
    """Open purchase order line for a product on the order"""
    product_id: str
    purchase_order_id: str
    po_number: str
    quantity: int
    expected_date: Optional[date] = None


class LineProgress(BaseModel):
    """Progress bar segments in percent of ordered"""
    shipped: float
    in_fulfillment: float
    allocated_not_picked: float


class OrderDetailLine(BaseModel):
    id: str
    product_id: str
    sku: Optional[str] = None
    product_name: Optional[str] = None
    quantity_ordered: int
    quantity_allocated: int
    quantity_shipped: int
    quantity_in_fulfillment: int
    unit_price: Decimal
    line_total: Decimal
    outstanding: int
    available_now: int
    on_order: int
    net_required: int
    coverable_now: bool
    stock_severity: str
    shippable_quantity: int
    can_allocate: bool
    can_unallocate: bool
    progress: LineProgress
    anomalies: List[str] = Field(default_factory=list)
    incoming: List[IncomingSupply] = Field(default_factory=list)


class OrderGates(BaseModel):
    """Which actions the detail view offers"""
    can_confirm: bool = False
    can_revert_to_draft: bool = False
    can_cancel: bool = False
    can_allocate: bool = False
    can_fulfill: bool = False
    can_edit_lines: bool = False
    can_add_lines: bool = False
    is_fully_allocated: bool = False
    has_allocated_items: bool = False
    has_allocatable_stock: bool = False
    has_fulfillments: bool = False


class FulfillmentSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    fulfillment_number: Optional[str] = None
    status: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    created_at: datetime
    shipped_at: Optional[datetime] = None


class OrderDetail(BaseModel):
    """Everything the order detail view renders, from one coordinated fetch"""
    order: SalesOrderResponse
    status_severity: str
    lines: List[OrderDetailLine]
    fulfillments: List[FulfillmentSummary]
    gates: OrderGates
    calculated_total: Decimal
    suggested_dispatch_date: Optional[date] = None
    anomalies: Dict[str, List[str]] = Field(default_factory=dict)


class ActionResult(BaseModel):
    """
    Outcome of a mutating action with the refetched order.

    severity follows the toast levels: success, info, warn, error.
    """
    success: bool
    severity: str
    message: str
    fulfillment_id: Optional[str] = None
    detail: OrderDetail
