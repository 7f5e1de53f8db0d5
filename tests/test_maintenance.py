from datetime import timedelta

from pointsmall.core import transaction, utcnow
from pointsmall.jobs import MaintenanceScheduler, run_auto_confirm, run_coupon_expiry
from pointsmall.models import ClaimStatus, Coupon, CouponStatus, Order, OrderStatus, UserCoupon
from pointsmall.schemas.order import OrderItemCreate
from pointsmall.services import CouponService, OrderService


def test_auto_confirm_job_uses_its_own_session(db, session_factory, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)
    order = OrderService.create_order(db, user_id, [OrderItemCreate(product_id=product.id, quantity=1)])
    OrderService.confirm_order(db, order.id)
    order = OrderService.ship_order(db, order.id)
    order_id = order.id

    order.shipped_at = utcnow() - timedelta(days=10)
    db.commit()

    assert run_auto_confirm(session_factory, threshold_days=7) == 1

    order = db.get(Order, order_id)
    assert order.status == OrderStatus.DELIVERED
    assert order.auto_confirmed is True
    db.rollback()

    assert run_auto_confirm(session_factory, threshold_days=7) == 0


def test_coupon_expiry_job(db, session_factory, make_coupon, user_id):
    now = utcnow()
    coupon = make_coupon()
    with transaction(db):
        claim = CouponService.claim(db, coupon.id, user_id)
        claim.expires_at = now - timedelta(hours=1)
    claim_id, coupon_id = claim.id, coupon.id
    lapsed = make_coupon(valid_from=now - timedelta(days=3), valid_until=now - timedelta(days=1))
    lapsed_id = lapsed.id
    db.rollback()

    assert run_coupon_expiry(session_factory) == {"claims_expired": 1, "coupons_expired": 1}

    assert db.get(UserCoupon, claim_id).status == ClaimStatus.EXPIRED
    assert db.get(Coupon, coupon_id).status == CouponStatus.ACTIVE
    assert db.get(Coupon, lapsed_id).status == CouponStatus.EXPIRED


def test_scheduler_registers_jobs(session_factory):
    scheduler = MaintenanceScheduler(session_factory)
    assert scheduler.is_running is False

    # Register without starting the event loop driven scheduler
    scheduler.scheduler.start = lambda *args, **kwargs: None
    scheduler.start()

    job_ids = {job.id for job in scheduler.scheduler.get_jobs()}
    assert job_ids == {"auto_confirm_delivery", "expire_coupons"}
    assert scheduler.is_running is True

    scheduler.scheduler.shutdown = lambda *args, **kwargs: None
    scheduler.stop()
    assert scheduler.is_running is False
