"""
Coupon & Claim Models
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Text, JSON, Uuid, Index, CheckConstraint
from sqlalchemy.orm import relationship
from pointsmall.core import Base
from .base import UUIDMixin, TimestampMixin

class CouponStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    DELETED = "deleted"

class DiscountType:
    FIXED = "fixed"
    PERCENTAGE = "percentage"

class ClaimStatus:
    AVAILABLE = "available"
    USED = "used"
    EXPIRED = "expired"

    # Claims that count against the per-user limit
    HELD = (AVAILABLE, USED)

class Coupon(Base, UUIDMixin, TimestampMixin):
    """Coupon definition and aggregate redemption counters"""
    __tablename__ = "coupon"
    
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default=CouponStatus.ACTIVE, index=True)  # active, inactive, expired, deleted
    
    # Discount rule
    discount_type = Column(String(20), nullable=False, default=DiscountType.FIXED)  # fixed, percentage
    discount_value = Column(Integer, nullable=False)  # points for fixed, 1-100 for percentage
    max_discount_amount = Column(Integer)  # cap for percentage discounts
    min_order_amount = Column(Integer, nullable=False, default=0)
    
    # Applicability (None / empty = no filter)
    applicable_products = Column(JSON)
    applicable_categories = Column(JSON)
    excluded_products = Column(JSON)
    excluded_categories = Column(JSON)
    
    # Counters - total None means unlimited
    total_quantity = Column(Integer)
    claimed_quantity = Column(Integer, nullable=False, default=0)
    used_quantity = Column(Integer, nullable=False, default=0)
    remaining_quantity = Column(Integer)
    per_user_limit = Column(Integer, nullable=False, default=1)
    
    # Validity window
    valid_from = Column(DateTime, nullable=False)
    valid_until = Column(DateTime, nullable=False)
    valid_days = Column(Integer)  # claim-relative validity, capped by valid_until
    
    created_by = Column(Uuid)
    
    # Relationships
    claims = relationship("UserCoupon", back_populates="coupon")
    
    __table_args__ = (
        CheckConstraint("remaining_quantity IS NULL OR remaining_quantity >= 0", name="ck_coupon_remaining_non_negative"),
        CheckConstraint("used_quantity >= 0", name="ck_coupon_used_non_negative"),
    )

class UserCoupon(Base, UUIDMixin, TimestampMixin):
    """A user's claim on one instance of a coupon"""
    __tablename__ = "user_coupon"
    
    coupon_id = Column(Uuid, ForeignKey("coupon.id"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False, index=True)
    
    status = Column(String(20), nullable=False, default=ClaimStatus.AVAILABLE, index=True)  # available, used, expired
    source = Column(String(50), nullable=False, default="manual")
    
    claimed_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)
    order_id = Column(Uuid, index=True)
    
    # Relationships
    coupon = relationship("Coupon", back_populates="claims")
    
    __table_args__ = (
        Index("ix_user_coupon_owner", coupon_id, user_id, status),
    )
