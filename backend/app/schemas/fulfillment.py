"""
Fulfillment Schemas
"""
from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime


class FulfillmentFilters(BaseModel):
    status: Optional[str] = None
    sales_order_id: Optional[str] = None
    search: Optional[str] = None


class FulfillmentLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sales_order_line_id: str
    location_id: Optional[str] = None
    quantity: int
    sku: Optional[str] = None
    product_name: Optional[str] = None


class FulfillmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    fulfillment_number: Optional[str] = None
    sales_order_id: str
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    created_at: datetime
    shipped_at: Optional[datetime] = None
    lines: List[FulfillmentLineResponse] = []


class FulfillmentStats(BaseModel):
    total_fulfillments: int = 0
    draft_count: int = 0
    picking_count: int = 0
    packed_count: int = 0
    shipped_count: int = 0
    cancelled_count: int = 0
