"""
Sales Order Model

Orders are created in draft, edited while draft, then moved forward by the
allocation and fulfillment procedures.
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Date, ForeignKey, Text, Boolean, JSON, BigInteger
from sqlalchemy.orm import relationship
from datetime import datetime

from app.db.base import Base, generate_uuid


class SalesOrder(Base):
    """Sales Order header"""
    __tablename__ = "sales_orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    # Order Identification
    order_number = Column(String(50), unique=True, nullable=False, index=True)  # SO-1001

    # Customer
    customer_id = Column(String(36), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)

    # Order Status
    # Lifecycle: draft → confirmed | requires_items | awaiting_stock | reserved
    #            → picking → packed → partially_shipped → shipped → completed
    # cancelled is reachable from the early states only
    status = Column(String(50), nullable=False, default="draft", index=True)
    is_open = Column(Boolean, nullable=True, default=True)

    # Address snapshots, copied when the order is created. Not a live
    # reference to the customer's current address.
    billing_address = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)
    shipping_method = Column(String(100), nullable=True)
    tracking_number = Column(String(255), nullable=True)

    dispatch_date = Column(Date, nullable=True)

    # Derived from the lines; the lines are authoritative
    total_amount = Column(Numeric(12, 2), nullable=True, default=0)

    notes = Column(Text, nullable=True)

    # Provenance
    source = Column(String(50), nullable=True, default="manual")  # manual | shopify
    shopify_order_id = Column(BigInteger, nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    customer = relationship("Customer", back_populates="sales_orders")
    lines = relationship(
        "SalesOrderLine",
        back_populates="sales_order",
        order_by="SalesOrderLine.created_at",
    )
    fulfillments = relationship(
        "Fulfillment",
        back_populates="sales_order",
        order_by="Fulfillment.created_at.desc()",
    )

    def __repr__(self):
        return f"<SalesOrder {self.order_number} - {self.status}>"


class SalesOrderLine(Base):
    """
    Sales Order Line - one product with ordered, allocated and shipped counters.

    quantity_allocated covers stock reserved for the line whether it is still
    sitting against the order or already moved into an open fulfillment.
    quantity_fulfilled is the shipped quantity.
    """
    __tablename__ = "sales_order_lines"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    sales_order_id = Column(String(36), ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    sku = Column(String(100), nullable=True)

    quantity_ordered = Column(Integer, nullable=False)
    quantity_allocated = Column(Integer, nullable=False, default=0)
    quantity_fulfilled = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    sales_order = relationship("SalesOrder", back_populates="lines")
    product = relationship("Product")

    @property
    def line_total(self):
        return (self.quantity_ordered or 0) * (self.unit_price or 0)

    def __repr__(self):
        return f"<SalesOrderLine {self.id} x{self.quantity_ordered}>"
