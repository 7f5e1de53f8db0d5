"""
Coupon Service - Coupon Redemption Counter

Aggregate counters live on the Coupon row; each user's right to redeem lives on a
UserCoupon claim row. claim() locks the coupon, consume()/reverse() lock the claim
and then its coupon.
"""
from dataclasses import dataclass
from datetime import timedelta
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
from uuid import UUID
import logging

from pointsmall.models import Coupon, UserCoupon, CouponStatus, DiscountType, ClaimStatus
from pointsmall.schemas.coupon import CouponCreate, CouponUpdate
from pointsmall.core.database import utcnow, as_utc
from pointsmall.core.exceptions import (
    MallError, ValidationError, CouponNotFoundError, CouponStateError,
)

logger = logging.getLogger(__name__)

# Fields an admin may still edit after a claim has been used
EDITABLE_AFTER_USE = {"name", "description", "status", "valid_until"}

REQUIRED_FIELDS = {
    "name", "status", "discount_type", "discount_value", "min_order_amount",
    "per_user_limit", "valid_from", "valid_until",
}

ID_LIST_FIELDS = {"applicable_products", "applicable_categories", "excluded_products", "excluded_categories"}


@dataclass
class CouponCheckResult:
    """Outcome of a non-mutating coupon check"""
    valid: bool
    reason: Optional[str] = None
    discount_amount: int = 0
    coupon: Optional[Coupon] = None
    claim: Optional[UserCoupon] = None


def _id_set(values) -> set:
    return {str(v) for v in (values or [])}


class CouponService:
    """Coupon business logic"""

    @staticmethod
    def _get_coupon(db: Session, coupon_id: UUID, lock: bool = False) -> Coupon:
        query = db.query(Coupon).filter(Coupon.id == coupon_id)
        if lock:
            query = query.with_for_update()
        coupon = query.first()
        if not coupon:
            raise CouponNotFoundError(f"Coupon not found: {coupon_id}", {"coupon_id": str(coupon_id)})
        return coupon

    @staticmethod
    def validate_rule(data) -> None:
        """Reject malformed discount rules (a CouponCreate or an edited Coupon)"""
        if data.discount_type not in (DiscountType.FIXED, DiscountType.PERCENTAGE):
            raise ValidationError("Invalid discount type", {"discount_type": data.discount_type})

        if data.discount_value <= 0:
            raise ValidationError("Discount value must be positive")

        if data.discount_type == DiscountType.PERCENTAGE and data.discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")

        if data.max_discount_amount is not None and data.max_discount_amount <= 0:
            raise ValidationError("Maximum discount must be positive")

        if data.min_order_amount < 0:
            raise ValidationError("Minimum order amount cannot be negative")

        if as_utc(data.valid_from) >= as_utc(data.valid_until):
            raise ValidationError("Coupon start time must be before end time")

    @staticmethod
    def create_coupon(db: Session, data: CouponCreate, admin_id: Optional[UUID] = None) -> Coupon:
        CouponService.validate_rule(data)

        if db.query(Coupon).filter(Coupon.code == data.code).first():
            raise ValidationError(f"Coupon code already exists: {data.code}")

        def _ids(values):
            return [str(v) for v in values] if values else None

        coupon = Coupon(
            code=data.code,
            name=data.name,
            description=data.description,
            status=CouponStatus.ACTIVE,
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            max_discount_amount=data.max_discount_amount,
            min_order_amount=data.min_order_amount,
            applicable_products=_ids(data.applicable_products),
            applicable_categories=_ids(data.applicable_categories),
            excluded_products=_ids(data.excluded_products),
            excluded_categories=_ids(data.excluded_categories),
            total_quantity=data.total_quantity,
            claimed_quantity=0,
            used_quantity=0,
            remaining_quantity=data.total_quantity,
            per_user_limit=data.per_user_limit,
            valid_from=as_utc(data.valid_from),
            valid_until=as_utc(data.valid_until),
            valid_days=data.valid_days,
            created_by=admin_id
        )
        db.add(coupon)
        db.flush()

        logger.info(f"Coupon created: {coupon.code} ({coupon.discount_type} {coupon.discount_value}) by {admin_id}")
        return coupon

    @staticmethod
    def update_coupon(db: Session, coupon_id: UUID, data: CouponUpdate, admin_id: Optional[UUID] = None) -> Coupon:
        """
        Apply a partial update to a coupon.

        Once any claim has been used only the descriptive fields, the status and
        the end of the window may change. The merged rule is re-validated.
        """
        coupon = CouponService._get_coupon(db, coupon_id, lock=True)
        if coupon.status == CouponStatus.DELETED:
            raise CouponStateError("Coupon has been deleted", {"coupon_id": str(coupon.id)})

        changes = data.model_dump(exclude_unset=True)

        if coupon.used_quantity > 0:
            restricted = sorted(set(changes) - EDITABLE_AFTER_USE)
            if restricted:
                raise CouponStateError(
                    f"Coupon has been used, cannot change: {', '.join(restricted)}",
                    {"coupon_id": str(coupon.id), "fields": restricted}
                )

        missing = sorted(f for f in REQUIRED_FIELDS if f in changes and changes[f] is None)
        if missing:
            raise ValidationError(f"Fields cannot be empty: {', '.join(missing)}", {"fields": missing})

        if "status" in changes and changes["status"] not in (CouponStatus.ACTIVE, CouponStatus.INACTIVE):
            raise ValidationError("Coupon status can only be set to active or inactive", {"status": changes["status"]})

        if "total_quantity" in changes:
            total = changes["total_quantity"]
            if total is not None and total < coupon.claimed_quantity:
                raise ValidationError(
                    "Total quantity cannot be less than the claims already issued",
                    {"total_quantity": total, "claimed_quantity": coupon.claimed_quantity}
                )
            coupon.remaining_quantity = None if total is None else total - coupon.claimed_quantity

        for field, value in changes.items():
            if field in ID_LIST_FIELDS and value is not None:
                value = [str(v) for v in value] or None
            elif field in ("valid_from", "valid_until"):
                value = as_utc(value)
            setattr(coupon, field, value)

        CouponService.validate_rule(coupon)
        db.flush()

        logger.info(f"Coupon updated: {coupon.code} fields={sorted(changes)} by {admin_id}")
        return coupon

    @staticmethod
    def delete_coupon(db: Session, coupon_id: UUID, admin_id: Optional[UUID] = None) -> dict:
        """Soft-delete a coupon that has claims, remove it outright otherwise"""
        coupon = CouponService._get_coupon(db, coupon_id, lock=True)

        claims = db.query(UserCoupon).filter(UserCoupon.coupon_id == coupon.id).count()
        hard_delete = claims == 0
        if hard_delete:
            db.delete(coupon)
        else:
            coupon.status = CouponStatus.DELETED
        db.flush()

        logger.info(f"Coupon deleted: {coupon.code} hard={hard_delete} by {admin_id}")
        return {"coupon_id": str(coupon_id), "hard_delete": hard_delete}

    @staticmethod
    def calculate_discount(coupon: Coupon, order_amount: int) -> int:
        """Discount in points, always within [0, order_amount]"""
        if coupon.discount_type == DiscountType.PERCENTAGE:
            discount = order_amount * coupon.discount_value // 100
            if coupon.max_discount_amount:
                discount = min(discount, coupon.max_discount_amount)
        else:
            discount = coupon.discount_value

        return max(0, min(discount, order_amount))

    @staticmethod
    def _window_reason(coupon: Coupon, now) -> Optional[str]:
        if coupon.status != CouponStatus.ACTIVE:
            return "Coupon is not active"
        if now < coupon.valid_from:
            return "Coupon is not yet valid"
        if now > coupon.valid_until:
            return "Coupon has expired"
        return None

    @staticmethod
    def _applicability_reason(
        coupon: Coupon,
        product_ids: Iterable[UUID],
        category_ids: Iterable[UUID]
    ) -> Optional[str]:
        products = _id_set(product_ids)
        categories = _id_set(category_ids)

        if products & _id_set(coupon.excluded_products) or categories & _id_set(coupon.excluded_categories):
            return "Coupon cannot be used with excluded items"

        allowed_products = _id_set(coupon.applicable_products)
        allowed_categories = _id_set(coupon.applicable_categories)
        if not allowed_products and not allowed_categories:
            return None

        if products & allowed_products or categories & allowed_categories:
            return None
        return "Coupon does not apply to these items"

    @staticmethod
    def claim(db: Session, coupon_id: UUID, user_id: UUID, source: str = "manual") -> UserCoupon:
        """Grant the user one claim on a coupon"""
        coupon = CouponService._get_coupon(db, coupon_id, lock=True)
        now = utcnow()

        reason = CouponService._window_reason(coupon, now)
        if reason:
            raise CouponStateError(reason, {"coupon_id": str(coupon.id), "status": coupon.status})

        if coupon.remaining_quantity is not None and coupon.remaining_quantity <= 0:
            raise CouponStateError("Coupon has been fully claimed", {"coupon_id": str(coupon.id)})

        held = db.query(UserCoupon).filter(
            UserCoupon.coupon_id == coupon.id,
            UserCoupon.user_id == user_id,
            UserCoupon.status.in_(ClaimStatus.HELD)
        ).count()

        if held >= coupon.per_user_limit:
            raise CouponStateError(
                "Coupon claim limit reached",
                {"coupon_id": str(coupon.id), "held": held, "per_user_limit": coupon.per_user_limit}
            )

        expires_at = coupon.valid_until
        if coupon.valid_days:
            expires_at = min(expires_at, now + timedelta(days=coupon.valid_days))

        claim = UserCoupon(
            coupon_id=coupon.id,
            user_id=user_id,
            status=ClaimStatus.AVAILABLE,
            source=source,
            claimed_at=now,
            expires_at=expires_at
        )
        db.add(claim)

        coupon.claimed_quantity += 1
        if coupon.remaining_quantity is not None:
            coupon.remaining_quantity -= 1
        db.flush()

        logger.info(f"Coupon claimed: {coupon.code} user={user_id} source={source}")
        return claim

    @staticmethod
    def batch_distribute(
        db: Session,
        coupon_id: UUID,
        user_ids: Iterable[UUID],
        admin_id: Optional[UUID] = None,
        source: str = "admin_distribute"
    ) -> dict:
        """
        Grant one claim to each user.

        Every grant goes through claim(), so the window, remaining quantity and
        per-user limit all apply. A rejected user gets a failure entry and does
        not stop the rest.
        """
        coupon = CouponService._get_coupon(db, coupon_id, lock=True)

        results = []
        for user_id in user_ids:
            try:
                with db.begin_nested():
                    claim = CouponService.claim(db, coupon.id, user_id, source)
            except MallError as e:
                results.append({"user_id": str(user_id), "success": False, "code": e.code, "message": e.message})
                continue
            results.append({"user_id": str(user_id), "success": True, "claim_id": str(claim.id)})

        succeeded = sum(1 for r in results if r["success"])
        logger.info(
            f"Coupon {coupon.code} distributed by {admin_id}: "
            f"{succeeded}/{len(results)} granted"
        )
        return {
            "total": len(results),
            "success": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    @staticmethod
    def validate(
        db: Session,
        coupon_id: UUID,
        user_id: UUID,
        order_amount: int,
        product_ids: Iterable[UUID] = (),
        category_ids: Iterable[UUID] = ()
    ) -> CouponCheckResult:
        """Check a coupon against an order without consuming it"""
        coupon = db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            return CouponCheckResult(valid=False, reason="Coupon not found")

        now = utcnow()
        held = db.query(UserCoupon).filter(
            UserCoupon.coupon_id == coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.status == ClaimStatus.AVAILABLE
        )
        # Soonest-expiring claim that is still usable
        claim = held.filter(UserCoupon.expires_at >= now).order_by(UserCoupon.expires_at).first()

        if not claim:
            # Lapsed claims the expiry sweep has not reached yet
            lapsed = held.order_by(UserCoupon.expires_at.desc()).first()
            if lapsed:
                return CouponCheckResult(valid=False, reason="Coupon claim has expired", coupon=coupon, claim=lapsed)
            return CouponCheckResult(valid=False, reason="No available claim for this coupon", coupon=coupon)

        reason = CouponService._window_reason(coupon, now)
        if not reason and order_amount < (coupon.min_order_amount or 0):
            reason = f"Order amount must be at least {coupon.min_order_amount} points"
        if not reason:
            reason = CouponService._applicability_reason(coupon, product_ids, category_ids)

        if reason:
            return CouponCheckResult(valid=False, reason=reason, coupon=coupon, claim=claim)

        return CouponCheckResult(
            valid=True,
            discount_amount=CouponService.calculate_discount(coupon, order_amount),
            coupon=coupon,
            claim=claim
        )

    @staticmethod
    def consume(db: Session, coupon_id: UUID, user_id: UUID, order_ref: UUID) -> UserCoupon:
        """Mark one available claim as used by an order"""
        claim = db.query(UserCoupon).filter(
            UserCoupon.coupon_id == coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.status == ClaimStatus.AVAILABLE,
            UserCoupon.expires_at >= utcnow()
        ).order_by(UserCoupon.expires_at).with_for_update().first()

        if not claim:
            raise CouponStateError(
                "Coupon is not claimed or already used",
                {"coupon_id": str(coupon_id), "user_id": str(user_id)}
            )

        coupon = CouponService._get_coupon(db, coupon_id, lock=True)

        claim.status = ClaimStatus.USED
        claim.used_at = utcnow()
        claim.order_id = order_ref
        coupon.used_quantity += 1
        db.flush()

        logger.info(f"Coupon consumed: {coupon.code} user={user_id} order={order_ref}")
        return claim

    @staticmethod
    def reverse(db: Session, coupon_id: UUID, user_id: UUID, order_ref: UUID) -> Optional[UserCoupon]:
        """
        Give a used claim back to the user.

        Returns None and leaves the claim used when the coupon's validity window
        has already elapsed.
        """
        claim = db.query(UserCoupon).filter(
            UserCoupon.coupon_id == coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.order_id == order_ref,
            UserCoupon.status == ClaimStatus.USED
        ).with_for_update().first()

        if not claim:
            raise CouponStateError(
                "No used coupon claim found for this order",
                {"coupon_id": str(coupon_id), "order_id": str(order_ref)}
            )

        coupon = CouponService._get_coupon(db, coupon_id, lock=True)

        now = utcnow()
        if now > coupon.valid_until or now > claim.expires_at:
            logger.info(f"Coupon {coupon.code} expired, claim not returned (order={order_ref})")
            return None

        claim.status = ClaimStatus.AVAILABLE
        claim.used_at = None
        claim.order_id = None
        coupon.used_quantity = max(0, coupon.used_quantity - 1)
        db.flush()

        logger.info(f"Coupon returned: {coupon.code} user={user_id} order={order_ref}")
        return claim

    @staticmethod
    def get_user_coupons(db: Session, user_id: UUID, status: Optional[str] = None) -> List[UserCoupon]:
        query = db.query(UserCoupon).filter(UserCoupon.user_id == user_id)

        if status:
            query = query.filter(UserCoupon.status == status)

        return query.order_by(UserCoupon.claimed_at.desc()).all()

    @staticmethod
    def expire_coupons(db: Session) -> dict:
        """Expire lapsed available claims and coupons past their window"""
        now = utcnow()

        claims = db.query(UserCoupon).filter(
            UserCoupon.status == ClaimStatus.AVAILABLE,
            UserCoupon.expires_at < now
        ).with_for_update().all()
        for claim in claims:
            claim.status = ClaimStatus.EXPIRED

        coupons = db.query(Coupon).filter(
            Coupon.status == CouponStatus.ACTIVE,
            Coupon.valid_until < now
        ).with_for_update().all()
        for coupon in coupons:
            coupon.status = CouponStatus.EXPIRED

        db.flush()

        if claims or coupons:
            logger.info(f"Coupon expiry: {len(claims)} claims, {len(coupons)} coupons expired")

        return {"claims_expired": len(claims), "coupons_expired": len(coupons)}
