"""
Order API Endpoints - thin wrappers over the order lifecycle
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from pointsmall.core.database import get_db
from pointsmall.core.retry import run_with_retry
from pointsmall.services import OrderService
from pointsmall.schemas.order import (
    OrderCreate, OrderCancel, ShipmentInfo, RefundRequestCreate, RefundDecision,
    AutoConfirmRequest, OrderResponse,
)
from .deps import get_current_user_id, get_admin_id

orders_router = APIRouter(tags=["orders"])


def _page(orders, total, page, per_page):
    return {
        "orders": [OrderResponse.model_validate(o) for o in orders],
        "total": total,
        "page": page,
        "per_page": per_page
    }


# ===================== BUYER =====================

@orders_router.post("/orders", response_model=OrderResponse, status_code=201)
def create_order(
    data: OrderCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.create_order(
        db, user_id, data.items,
        coupon_id=data.coupon_id,
        shipping_address=data.shipping_address,
        remark=data.remark
    ))


@orders_router.get("/orders")
def list_my_orders(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    orders, total = OrderService.get_user_orders(db, user_id, status, page, per_page)
    return _page(orders, total, page, per_page)


@orders_router.get("/orders/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return OrderService.get_order(db, order_id, user_id)


@orders_router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: UUID,
    data: OrderCancel,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.cancel_order(db, order_id, user_id, data.reason))


@orders_router.post("/orders/{order_id}/deliver", response_model=OrderResponse)
def confirm_delivery(
    order_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.confirm_delivery(db, order_id, user_id))


@orders_router.post("/orders/{order_id}/complete", response_model=OrderResponse)
def complete_order(
    order_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.complete_order(db, order_id, user_id))


@orders_router.post("/orders/{order_id}/refund", response_model=OrderResponse)
def request_refund(
    order_id: UUID,
    data: RefundRequestCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.request_refund(db, order_id, user_id, data.reason, data.amount))


# ===================== BACK OFFICE =====================

@orders_router.post("/orders/{order_id}/confirm", response_model=OrderResponse)
def confirm_order(
    order_id: UUID,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.confirm_order(db, order_id, admin_id))


@orders_router.post("/orders/{order_id}/ship", response_model=OrderResponse)
def ship_order(
    order_id: UUID,
    data: ShipmentInfo,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    shipping_info = data.model_dump(exclude_none=True)
    return run_with_retry(lambda: OrderService.ship_order(db, order_id, shipping_info, admin_id))


@orders_router.post("/orders/{order_id}/refund/process", response_model=OrderResponse)
def process_refund(
    order_id: UUID,
    data: RefundDecision,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    return run_with_retry(lambda: OrderService.process_refund(db, order_id, data.approved, data.reason, admin_id))


@orders_router.get("/admin/orders")
def list_orders(
    status: Optional[str] = Query(None),
    user_id: Optional[UUID] = Query(None),
    order_number: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db)
):
    orders, total = OrderService.get_orders(db, status, user_id, order_number, page, per_page)
    return _page(orders, total, page, per_page)


@orders_router.get("/admin/orders/stats")
def order_stats(user_id: Optional[UUID] = Query(None), db: Session = Depends(get_db)):
    return OrderService.get_order_stats(db, user_id)


@orders_router.post("/admin/orders/auto-confirm")
def auto_confirm(data: AutoConfirmRequest, db: Session = Depends(get_db)):
    count = run_with_retry(lambda: OrderService.auto_confirm_delivery(db, data.threshold_days))
    return {"confirmed": count, "threshold_days": data.threshold_days}
