"""
Order Models
"""
from sqlalchemy import Column, String, Numeric, Integer, Boolean, DateTime, ForeignKey, Text, JSON, Uuid
from sqlalchemy.orm import relationship
from pointsmall.core import Base
from .base import UUIDMixin, TimestampMixin

class OrderStatus:
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUND_REQUESTED = "refund_requested"
    REFUNDED = "refunded"

    TERMINAL = (CANCELLED, REFUNDED, COMPLETED)

class Order(Base, UUIDMixin, TimestampMixin):
    """Order Header"""
    __tablename__ = "orders"
    
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING, index=True)
    
    # Amounts (points)
    total_amount = Column(Numeric(12, 2), default=0)  # gross, at original prices
    points_amount = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False, default=0)
    final_amount = Column(Integer, nullable=False, default=0)  # max(0, points_amount - discount_amount)
    item_count = Column(Integer, nullable=False, default=0)
    
    # Coupon
    coupon_id = Column(Uuid, ForeignKey("coupon.id"))
    coupon_info = Column(JSON)
    
    # Shipping
    shipping_address = Column(JSON)
    shipping_info = Column(JSON)  # courier, tracking number, etc.
    remark = Column(Text)
    
    # Cancellation / refund
    cancel_reason = Column(Text)
    refund_info = Column(JSON)
    auto_confirmed = Column(Boolean, nullable=False, default=False)
    
    # Admin references
    confirmed_by = Column(Uuid)
    shipped_by = Column(Uuid)
    
    # Transition timestamps
    paid_at = Column(DateTime)
    confirmed_at = Column(DateTime)
    shipped_at = Column(DateTime, index=True)
    delivered_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    refund_requested_at = Column(DateTime)
    refunded_at = Column(DateTime)
    
    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.line_no")

class OrderItem(Base, UUIDMixin):
    """Order line with a frozen product snapshot"""
    __tablename__ = "order_item"
    
    order_id = Column(Uuid, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Uuid, ForeignKey("product.id"), nullable=False, index=True)
    line_no = Column(Integer, nullable=False, default=1)
    
    product_name = Column(String(300))
    product_sku = Column(String(100))
    product_image = Column(String(500))
    original_price = Column(Numeric(12, 2), default=0)
    points_price = Column(Integer, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    total_points = Column(Integer, nullable=False)
    product_snapshot = Column(JSON)
    
    # Relationships
    order = relationship("Order", back_populates="items")

class OrderSequence(Base):
    """Daily order number counter, row-locked when issuing a number"""
    __tablename__ = "order_sequence"
    
    seq_date = Column(String(8), primary_key=True)  # YYYYMMDD
    last_value = Column(Integer, nullable=False, default=0)
