"""
Stock Movement Ledger
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from pointsmall.core import Base
from .base import UUIDMixin

class StockLedger(Base, UUIDMixin):
    """Stock Movement Ledger"""
    __tablename__ = "stock_ledger"
    
    product_id = Column(Uuid, ForeignKey("product.id"), nullable=False, index=True)
    
    # Movement info
    movement_type = Column(String(20), nullable=False)  # RESERVE, RELEASE
    quantity = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)
    
    # Reference
    reference_type = Column(String(30))  # ORDER
    reference_id = Column(String(50), index=True)
    
    note = Column(Text)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    
    # Relationships
    product = relationship("Product", back_populates="stock_ledger")
