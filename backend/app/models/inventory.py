"""
Inventory position model

Maps the ``product_inventory_view`` database view. The view aggregates the
inventory snapshots per product; rows are never written from here.
"""
from sqlalchemy import Column, Integer, String

from app.db.base import Base


class ProductInventory(Base):
    """Per-product stock position (read-only view)"""
    __tablename__ = "product_inventory_view"
    __table_args__ = {"info": {"is_view": True}}

    product_id = Column(String(36), primary_key=True)
    sku = Column(String(100), nullable=True)
    name = Column(String(255), nullable=True)

    qoh = Column(Integer, nullable=False, default=0)
    reserved = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)  # qoh - reserved
    on_order = Column(Integer, nullable=False, default=0)  # open purchase orders
    demand = Column(Integer, nullable=False, default=0)  # open sales order backlog
    net_required = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<ProductInventory {self.sku} avail={self.available}>"
