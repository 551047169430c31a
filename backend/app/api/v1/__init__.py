"""
API v1 Router - Stockroom
"""
from fastapi import APIRouter
from app.api.v1.endpoints import (
    sales_orders,
    fulfillments,
    realtime,
)

router = APIRouter()

# Sales Orders
router.include_router(sales_orders.router)

# Fulfillments
router.include_router(fulfillments.router)

# Realtime change events
router.include_router(realtime.router)
