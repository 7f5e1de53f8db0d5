"""
Coupon Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID

class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: str = "fixed"  # fixed, percentage
    discount_value: int
    max_discount_amount: Optional[int] = None
    min_order_amount: int = 0
    applicable_products: Optional[List[UUID]] = None
    applicable_categories: Optional[List[UUID]] = None
    excluded_products: Optional[List[UUID]] = None
    excluded_categories: Optional[List[UUID]] = None
    total_quantity: Optional[int] = Field(None, ge=0)
    per_user_limit: int = Field(1, ge=1)
    valid_from: datetime
    valid_until: datetime
    valid_days: Optional[int] = Field(None, ge=1)

class CouponUpdate(BaseModel):
    """Partial update; only the fields sent are applied"""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = None  # active, inactive
    discount_type: Optional[str] = None
    discount_value: Optional[int] = None
    max_discount_amount: Optional[int] = None
    min_order_amount: Optional[int] = None
    applicable_products: Optional[List[UUID]] = None
    applicable_categories: Optional[List[UUID]] = None
    excluded_products: Optional[List[UUID]] = None
    excluded_categories: Optional[List[UUID]] = None
    total_quantity: Optional[int] = Field(None, ge=0)
    per_user_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    valid_days: Optional[int] = Field(None, ge=1)

class CouponDistribute(BaseModel):
    user_ids: List[UUID] = Field(..., min_length=1)
    source: str = Field("admin_distribute", max_length=50)

class CouponClaim(BaseModel):
    source: str = Field("manual", max_length=50)

class CouponCheck(BaseModel):
    order_amount: int = Field(..., ge=0)
    product_ids: List[UUID] = []
    category_ids: List[UUID] = []

class CouponValidationResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None
    discount_amount: int = 0

class CouponResponse(BaseModel):
    id: UUID
    code: str
    name: str
    status: str
    discount_type: str
    discount_value: int
    max_discount_amount: Optional[int]
    min_order_amount: int
    total_quantity: Optional[int]
    claimed_quantity: int
    used_quantity: int
    remaining_quantity: Optional[int]
    per_user_limit: int
    valid_from: datetime
    valid_until: datetime

    class Config:
        from_attributes = True

class UserCouponResponse(BaseModel):
    id: UUID
    coupon_id: UUID
    user_id: UUID
    status: str
    source: str
    claimed_at: datetime
    expires_at: datetime
    used_at: Optional[datetime]
    order_id: Optional[UUID]

    class Config:
        from_attributes = True
