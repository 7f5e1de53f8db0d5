"""
Coupon API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from pointsmall.core.database import get_db, transaction
from pointsmall.core.retry import run_with_retry
from pointsmall.services import CouponService
from pointsmall.schemas.coupon import (
    CouponCreate, CouponUpdate, CouponDistribute, CouponClaim, CouponCheck, CouponValidationResponse,
    CouponResponse, UserCouponResponse,
)
from .deps import get_current_user_id, get_admin_id

coupons_router = APIRouter(tags=["coupons"])


@coupons_router.post("/admin/coupons", response_model=CouponResponse, status_code=201)
def create_coupon(
    data: CouponCreate,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    with transaction(db):
        coupon = CouponService.create_coupon(db, data, admin_id)
    return coupon


@coupons_router.patch("/admin/coupons/{coupon_id}", response_model=CouponResponse)
def update_coupon(
    coupon_id: UUID,
    data: CouponUpdate,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    def update():
        with transaction(db):
            coupon = CouponService.update_coupon(db, coupon_id, data, admin_id)
        return coupon

    return run_with_retry(update)


@coupons_router.delete("/admin/coupons/{coupon_id}")
def delete_coupon(
    coupon_id: UUID,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    def delete():
        with transaction(db):
            result = CouponService.delete_coupon(db, coupon_id, admin_id)
        return result

    return run_with_retry(delete)


@coupons_router.post("/admin/coupons/{coupon_id}/distribute")
def distribute_coupon(
    coupon_id: UUID,
    data: CouponDistribute,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    def distribute():
        with transaction(db):
            result = CouponService.batch_distribute(db, coupon_id, data.user_ids, admin_id, data.source)
        return result

    return run_with_retry(distribute)


@coupons_router.post("/coupons/{coupon_id}/claim", response_model=UserCouponResponse, status_code=201)
def claim_coupon(
    coupon_id: UUID,
    data: CouponClaim,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    def claim():
        with transaction(db):
            result = CouponService.claim(db, coupon_id, user_id, data.source)
        return result

    return run_with_retry(claim)


@coupons_router.post("/coupons/{coupon_id}/validate", response_model=CouponValidationResponse)
def validate_coupon(
    coupon_id: UUID,
    data: CouponCheck,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    result = CouponService.validate(
        db, coupon_id, user_id, data.order_amount,
        product_ids=data.product_ids,
        category_ids=data.category_ids
    )
    return CouponValidationResponse(
        valid=result.valid,
        reason=result.reason,
        discount_amount=result.discount_amount
    )


@coupons_router.get("/coupons/mine", response_model=List[UserCouponResponse])
def my_coupons(
    status: Optional[str] = Query(None),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    return CouponService.get_user_coupons(db, user_id, status)
