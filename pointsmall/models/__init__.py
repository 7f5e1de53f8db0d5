from .base import TimestampMixin, UUIDMixin
from .product import Product, ProductStatus
from .stock import StockLedger
from .points import PointsAccount, PointsTransaction, PointsTxType
from .coupon import Coupon, UserCoupon, CouponStatus, DiscountType, ClaimStatus
from .order import Order, OrderItem, OrderSequence, OrderStatus
from .audit import AuditLog

__all__ = [
    # Base
    "TimestampMixin", "UUIDMixin",
    # Product
    "Product", "ProductStatus",
    # Stock
    "StockLedger",
    # Points
    "PointsAccount", "PointsTransaction", "PointsTxType",
    # Coupon
    "Coupon", "UserCoupon", "CouponStatus", "DiscountType", "ClaimStatus",
    # Order
    "Order", "OrderItem", "OrderSequence", "OrderStatus",
    # Audit
    "AuditLog",
]
