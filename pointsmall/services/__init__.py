# Services Package
from .points_service import PointsService
from .stock_service import StockService
from .coupon_service import CouponService, CouponCheckResult
from .order_service import OrderService

__all__ = [
    "PointsService",
    "StockService",
    "CouponService",
    "CouponCheckResult",
    "OrderService",
]
