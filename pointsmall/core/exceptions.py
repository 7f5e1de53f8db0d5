"""
Error taxonomy for the fulfillment core.

Every business failure carries a stable ``code`` and a ``category`` so callers can
tell "insufficient points" from "item sold out" without parsing messages. Only
``ContentionError`` is retryable.
"""
from typing import Any, Dict, Optional


class MallError(Exception):
    code = "MALL_ERROR"
    category = "internal"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "category": self.category,
            "details": self.details,
        }


# ===================== VALIDATION =====================

class ValidationError(MallError):
    code = "VALIDATION_ERROR"
    category = "validation"
    status_code = 400


# ===================== NOT FOUND =====================

class NotFoundError(MallError):
    code = "NOT_FOUND"
    category = "not_found"
    status_code = 404


class OrderNotFoundError(NotFoundError):
    code = "ORDER_NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class CouponNotFoundError(NotFoundError):
    code = "COUPON_NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    code = "ACCOUNT_NOT_FOUND"


class OrderNotOwnedError(MallError):
    code = "ORDER_NOT_OWNED"
    category = "forbidden"
    status_code = 403


# ===================== INSUFFICIENT RESOURCE =====================

class InsufficientResourceError(MallError):
    code = "INSUFFICIENT_RESOURCE"
    category = "insufficient"
    status_code = 409


class OutOfStockError(InsufficientResourceError):
    code = "OUT_OF_STOCK"


class InsufficientPointsError(InsufficientResourceError):
    code = "INSUFFICIENT_POINTS"


class InsufficientFrozenPointsError(InsufficientResourceError):
    code = "INSUFFICIENT_FROZEN_POINTS"


# ===================== STATE CONFLICT =====================

class StateConflictError(MallError):
    code = "STATE_CONFLICT"
    category = "state_conflict"
    status_code = 409


class InvalidOrderStateError(StateConflictError):
    code = "INVALID_ORDER_STATE"


class ProductUnavailableError(StateConflictError):
    code = "PRODUCT_UNAVAILABLE"


class CouponStateError(StateConflictError):
    code = "COUPON_STATE_CONFLICT"


class CouponInvalidError(StateConflictError):
    code = "COUPON_INVALID"


# ===================== CONTENTION =====================

class ContentionError(MallError):
    code = "LOCK_CONTENTION"
    category = "contention"
    status_code = 503
    retryable = True
