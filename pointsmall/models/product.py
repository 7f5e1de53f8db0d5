"""
Product Model (stock-relevant fields are owned by StockService)
"""
from sqlalchemy import Column, String, Numeric, Integer, Text, JSON, Uuid, CheckConstraint
from sqlalchemy.orm import relationship
from pointsmall.core import Base
from .base import UUIDMixin, TimestampMixin

class ProductStatus:
    ACTIVE = "active"
    OUT_OF_STOCK = "out_of_stock"
    INACTIVE = "inactive"
    DELETED = "deleted"

class Product(Base, UUIDMixin, TimestampMixin):
    """Redeemable product"""
    __tablename__ = "product"
    
    sku = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(300), nullable=False)
    description = Column(Text)
    category_id = Column(Uuid, index=True)
    images = Column(JSON)
    specifications = Column(JSON)
    
    # Prices
    points_price = Column(Integer, nullable=False, default=0)
    original_price = Column(Numeric(12, 2), default=0)
    
    # Stock - mutated only through StockService.reserve / release
    stock = Column(Integer, nullable=False, default=0)
    sales_count = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=ProductStatus.ACTIVE, index=True)  # active, out_of_stock, inactive, deleted
    
    # Relationships
    stock_ledger = relationship("StockLedger", back_populates="product")
    
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )
