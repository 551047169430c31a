"""
Fulfillment models

A fulfillment is one shipment event against a sales order. Fulfillments are
append-only history: the procedures create them, move them through picking
and shipping, and can cancel or revert them as a whole.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime

from app.db.base import Base, generate_uuid


class Fulfillment(Base):
    """Fulfillment header"""
    __tablename__ = "fulfillments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    sales_order_id = Column(String(36), ForeignKey("sales_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    fulfillment_number = Column(String(100), nullable=True, index=True)  # FUL-SO-1001-142501

    # draft | picking | packing | packed | shipped | cancelled
    # Independent of the order status
    status = Column(String(50), nullable=False, default="draft", index=True)

    tracking_number = Column(String(255), nullable=True)
    carrier = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    shipped_at = Column(DateTime, nullable=True)

    sales_order = relationship("SalesOrder", back_populates="fulfillments")
    lines = relationship("FulfillmentLine", back_populates="fulfillment")

    def __repr__(self):
        return f"<Fulfillment {self.fulfillment_number} - {self.status}>"


class FulfillmentLine(Base):
    """Quantity of one order line included in a fulfillment"""
    __tablename__ = "fulfillment_lines"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    fulfillment_id = Column(String(36), ForeignKey("fulfillments.id", ondelete="CASCADE"), nullable=False, index=True)
    sales_order_line_id = Column(String(36), ForeignKey("sales_order_lines.id"), nullable=False, index=True)
    location_id = Column(String(36), nullable=True)
    quantity = Column(Integer, nullable=False)

    fulfillment = relationship("Fulfillment", back_populates="lines")
    sales_order_line = relationship("SalesOrderLine")
