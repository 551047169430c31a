"""Database models"""
from app.models.product import Product, Customer
from app.models.inventory import ProductInventory
from app.models.sales_order import SalesOrder, SalesOrderLine
from app.models.fulfillment import Fulfillment, FulfillmentLine
from app.models.purchase_order import PurchaseOrder, PurchaseOrderLine

__all__ = [
    # Catalog
    "Product",
    "Customer",
    # Inventory
    "ProductInventory",
    # Sales
    "SalesOrder",
    "SalesOrderLine",
    "Fulfillment",
    "FulfillmentLine",
    # Purchasing
    "PurchaseOrder",
    "PurchaseOrderLine",
]
