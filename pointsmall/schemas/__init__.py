# Pydantic Schemas Package
from .order import (
    OrderCreate, OrderItemCreate, OrderCancel, ShipmentInfo, RefundRequestCreate,
    RefundDecision, AutoConfirmRequest, OrderResponse, OrderItemResponse,
)
from .points import (
    PointsTransfer, PointsFreeze, PointsAdjust, PointsAdjustItem, PointsBatchAdjust,
    PointsAccountResponse, PointsTransactionResponse,
)
from .coupon import (
    CouponCreate, CouponUpdate, CouponDistribute, CouponClaim, CouponCheck, CouponValidationResponse,
    CouponResponse, UserCouponResponse,
)
from .stock import StockAvailability, StockMovementResponse

__all__ = [
    "OrderCreate", "OrderItemCreate", "OrderCancel", "ShipmentInfo", "RefundRequestCreate",
    "RefundDecision", "AutoConfirmRequest", "OrderResponse", "OrderItemResponse",
    "PointsTransfer", "PointsFreeze", "PointsAdjust", "PointsAdjustItem", "PointsBatchAdjust",
    "PointsAccountResponse", "PointsTransactionResponse",
    "CouponCreate", "CouponUpdate", "CouponDistribute", "CouponClaim", "CouponCheck", "CouponValidationResponse", "CouponResponse", "UserCouponResponse",
    "StockAvailability", "StockMovementResponse",
]
