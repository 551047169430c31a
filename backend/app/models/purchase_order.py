"""
Purchase Order models

Only read here: open purchase-order lines are the incoming supply shown
against sales order lines.
"""
from sqlalchemy import Column, Integer, String, DateTime, Date, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from app.db.base import Base, generate_uuid


class PurchaseOrder(Base):
    """Purchase Order header model"""
    __tablename__ = "purchase_orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    po_number = Column(String(50), unique=True, nullable=False, index=True)  # PO-1001
    supplier_name = Column(String(255), nullable=False)

    # Status workflow: draft -> placed -> partial -> received
    # Also: cancelled
    status = Column(String(50), default="draft", nullable=False, index=True)

    expected_date = Column(Date, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lines = relationship("PurchaseOrderLine", back_populates="purchase_order")

    def __repr__(self):
        return f"<PurchaseOrder {self.po_number} - {self.status}>"


class PurchaseOrderLine(Base):
    """Purchase Order line item model"""
    __tablename__ = "purchase_order_lines"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    purchase_order_id = Column(String(36), ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)

    quantity_ordered = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Numeric(10, 2), nullable=True, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    product = relationship("Product")

    @property
    def quantity_outstanding(self) -> int:
        return max(0, (self.quantity_ordered or 0) - (self.quantity_received or 0))
