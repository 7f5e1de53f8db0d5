"""
Order Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID
from decimal import Decimal

class OrderItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(1, ge=1, le=999)

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1, max_length=50)
    coupon_id: Optional[UUID] = None
    shipping_address: Dict[str, Any] = {}
    remark: Optional[str] = Field(None, max_length=500)

class OrderCancel(BaseModel):
    reason: str = Field("cancelled by user", max_length=500)

class ShipmentInfo(BaseModel):
    courier_code: Optional[str] = None
    tracking_number: Optional[str] = None
    note: Optional[str] = None

class RefundRequestCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)
    amount: Optional[int] = Field(None, gt=0)

class RefundDecision(BaseModel):
    approved: bool
    reason: str = Field("", max_length=500)

class AutoConfirmRequest(BaseModel):
    threshold_days: int = Field(7, ge=1)

class OrderItemResponse(BaseModel):
    id: UUID
    product_id: UUID
    product_name: Optional[str]
    product_sku: Optional[str]
    points_price: int
    original_price: Optional[Decimal]
    quantity: int
    total_points: int
    product_snapshot: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True

class OrderResponse(BaseModel):
    id: UUID
    order_number: str
    user_id: UUID
    status: str
    total_amount: Optional[Decimal]
    points_amount: int
    discount_amount: int
    final_amount: int
    item_count: int
    coupon_id: Optional[UUID] = None
    coupon_info: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    shipping_info: Optional[Dict[str, Any]] = None
    remark: Optional[str] = None
    cancel_reason: Optional[str] = None
    refund_info: Optional[Dict[str, Any]] = None
    auto_confirmed: bool = False
    created_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refund_requested_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    class Config:
        from_attributes = True
