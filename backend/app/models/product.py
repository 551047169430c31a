"""
Product and Customer models
"""
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from app.db.base import Base, generate_uuid


class Product(Base):
    """Sellable product"""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    sku = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    barcode = Column(String(100), nullable=True)
    carton_qty = Column(Integer, nullable=True, default=1)

    # active | inactive | archived | clearance | discontinued | suspended
    status = Column(String(50), nullable=False, default="active")

    list_price = Column(Numeric(10, 2), nullable=True)
    cost_price = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Product {self.sku}>"


class Customer(Base):
    """Customer master record"""
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    company = Column(String(255), nullable=True)

    # Current addresses. Orders keep their own snapshot.
    billing_address = Column(JSON, nullable=True)
    shipping_address = Column(JSON, nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    sales_orders = relationship("SalesOrder", back_populates="customer")

    def __repr__(self):
        return f"<Customer {self.name}>"
