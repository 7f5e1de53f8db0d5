from datetime import timedelta
from uuid import uuid4

import pytest

from pointsmall.core import transaction, utcnow
from pointsmall.core.exceptions import (
    ValidationError, OutOfStockError, InsufficientPointsError, CouponInvalidError,
    InvalidOrderStateError, OrderNotFoundError, OrderNotOwnedError, ProductUnavailableError,
)
from pointsmall.models import (
    AuditLog, ClaimStatus, Order, OrderStatus, PointsAccount, PointsTransaction, ProductStatus, StockLedger,
)
from pointsmall.schemas.order import OrderItemCreate
from pointsmall.services import CouponService, OrderService, PointsService


def _items(*pairs):
    return [OrderItemCreate(product_id=product.id, quantity=qty) for product, qty in pairs]


def _balance(db, user_id):
    return db.query(PointsAccount).filter(PointsAccount.user_id == user_id).one().balance


def _delivered_order(db, user_id, product, qty=1):
    order = OrderService.create_order(db, user_id, _items((product, qty)))
    OrderService.confirm_order(db, order.id)
    OrderService.ship_order(db, order.id, {"courier_code": "SF", "tracking_number": "SF123"})
    return OrderService.confirm_delivery(db, order.id, user_id)


# ===================== CREATE =====================

def test_create_order_then_sold_out(db, make_product, fund, user_id):
    product = make_product(stock=2, points_price=300)
    fund(user_id, 500)

    order = OrderService.create_order(db, user_id, _items((product, 1)), shipping_address={"city": "Shanghai"})

    assert order.status == OrderStatus.PENDING
    assert order.points_amount == 300
    assert order.final_amount == 300
    assert order.item_count == 1
    assert order.shipping_address == {"city": "Shanghai"}
    assert _balance(db, user_id) == 200
    assert product.stock == 1

    with pytest.raises(OutOfStockError):
        OrderService.create_order(db, user_id, _items((product, 2)))

    assert _balance(db, user_id) == 200
    assert product.stock == 1
    assert db.query(Order).count() == 1


def test_create_order_snapshots_items(db, make_product, fund, user_id):
    a = make_product(stock=5, points_price=100, name="Mug")
    b = make_product(stock=5, points_price=50, name="Pen")
    fund(user_id, 1000)

    order = OrderService.create_order(db, user_id, _items((a, 2), (b, 1)))

    assert order.points_amount == 250
    assert order.item_count == 3
    assert [i.product_name for i in order.items] == ["Mug", "Pen"]
    assert order.items[0].total_points == 200
    assert order.items[0].product_snapshot["name"] == "Mug"
    assert order.items[0].product_image.endswith(".jpg")

    # Later product edits do not reach the settled order
    with transaction(db):
        a.name = "Renamed mug"
        a.points_price = 999
    db.refresh(order)
    assert order.items[0].product_name == "Mug"
    assert order.items[0].points_price == 100


def test_create_order_numbers_are_sequential(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)

    first = OrderService.create_order(db, user_id, _items((product, 1)))
    second = OrderService.create_order(db, user_id, _items((product, 1)))

    today = utcnow().strftime("%Y%m%d")
    assert first.order_number == f"PM{today}000001"
    assert second.order_number == f"PM{today}000002"


def test_duplicate_lines_are_reserved_together(db, make_product, fund, user_id):
    product = make_product(stock=3, points_price=10)
    fund(user_id, 100)

    with pytest.raises(OutOfStockError):
        OrderService.create_order(db, user_id, _items((product, 2), (product, 2)))

    order = OrderService.create_order(db, user_id, _items((product, 1), (product, 2)))
    assert len(order.items) == 2
    assert product.stock == 0
    assert product.status == ProductStatus.OUT_OF_STOCK


def test_insufficient_points_touches_nothing(db, make_product, fund, user_id):
    a = make_product(stock=5, points_price=300)
    b = make_product(stock=5, points_price=300)
    fund(user_id, 500)

    with pytest.raises(InsufficientPointsError):
        OrderService.create_order(db, user_id, _items((a, 1), (b, 1)))

    assert a.stock == 5 and b.stock == 5
    assert _balance(db, user_id) == 500
    assert db.query(StockLedger).count() == 0
    assert db.query(Order).count() == 0


def test_frozen_points_are_not_spendable(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=300)
    fund(user_id, 500)
    with transaction(db):
        PointsService.freeze(db, user_id, 300, reason="hold")

    with pytest.raises(InsufficientPointsError):
        OrderService.create_order(db, user_id, _items((product, 1)))


def test_create_order_rejects_unavailable_products(db, make_product, fund, user_id):
    product = make_product(stock=5, status=ProductStatus.INACTIVE)
    fund(user_id, 1000)

    with pytest.raises(ProductUnavailableError):
        OrderService.create_order(db, user_id, _items((product, 1)))

    with pytest.raises(ValidationError):
        OrderService.create_order(db, user_id, [])


def test_zero_cost_order_moves_no_points(db, make_product, make_coupon, user_id):
    product = make_product(stock=5, points_price=40)
    coupon = make_coupon(discount_value=50)
    with transaction(db):
        CouponService.claim(db, coupon.id, user_id)

    order = OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)

    assert order.discount_amount == 40
    assert order.final_amount == 0
    assert db.query(PointsTransaction).filter(PointsTransaction.user_id == user_id).count() == 0

    OrderService.cancel_order(db, order.id, user_id)
    assert db.query(PointsTransaction).filter(PointsTransaction.user_id == user_id).count() == 0


# ===================== COUPONS =====================

def test_coupon_order_and_cancel_restores_claim(db, make_product, make_coupon, fund, user_id):
    product = make_product(stock=5, points_price=300)
    coupon = make_coupon(discount_value=50)
    fund(user_id, 1000)
    with transaction(db):
        claim = CouponService.claim(db, coupon.id, user_id)

    order = OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)

    assert order.discount_amount == 50
    assert order.final_amount == 250
    assert order.coupon_info["code"] == coupon.code
    assert _balance(db, user_id) == 750
    assert claim.status == ClaimStatus.USED
    assert claim.order_id == order.id
    assert coupon.used_quantity == 1

    cancelled = OrderService.cancel_order(db, order.id, user_id, "changed my mind")

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancel_reason == "changed my mind"
    assert cancelled.cancelled_at is not None
    assert _balance(db, user_id) == 1000
    assert product.stock == 5
    assert claim.status == ClaimStatus.AVAILABLE
    assert coupon.used_quantity == 0


def test_cancel_after_coupon_expiry_keeps_claim_used(db, make_product, make_coupon, fund, user_id):
    product = make_product(stock=5, points_price=300)
    coupon = make_coupon(discount_value=50)
    fund(user_id, 1000)
    with transaction(db):
        claim = CouponService.claim(db, coupon.id, user_id)
    order = OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)

    with transaction(db):
        coupon.valid_until = utcnow() - timedelta(minutes=1)

    OrderService.cancel_order(db, order.id, user_id)

    assert _balance(db, user_id) == 1000
    assert claim.status == ClaimStatus.USED
    assert coupon.used_quantity == 1


def test_coupon_order_skips_lapsed_claim(db, make_product, make_coupon, fund, user_id):
    product = make_product(stock=5, points_price=300)
    coupon = make_coupon(discount_value=50, per_user_limit=2, valid_days=7)
    fund(user_id, 1000)
    with transaction(db):
        lapsed = CouponService.claim(db, coupon.id, user_id)
    with transaction(db):
        fresh = CouponService.claim(db, coupon.id, user_id)
    with transaction(db):
        lapsed.expires_at = utcnow() - timedelta(days=2)

    order = OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)

    assert order.final_amount == 250
    assert fresh.status == ClaimStatus.USED
    assert fresh.order_id == order.id
    assert lapsed.status == ClaimStatus.AVAILABLE
    assert lapsed.order_id is None


def test_invalid_coupon_rejects_order(db, make_product, make_coupon, fund, user_id):
    product = make_product(stock=5, points_price=100)
    coupon = make_coupon(min_order_amount=500)
    fund(user_id, 1000)

    with pytest.raises(CouponInvalidError) as exc:
        OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)
    assert "claim" in exc.value.message

    with transaction(db):
        CouponService.claim(db, coupon.id, user_id)

    with pytest.raises(CouponInvalidError) as exc:
        OrderService.create_order(db, user_id, _items((product, 1)), coupon_id=coupon.id)
    assert "500" in exc.value.message
    assert product.stock == 5
    assert _balance(db, user_id) == 1000


def test_coupon_applicability_uses_product_categories(db, make_product, make_coupon, fund, user_id):
    category_id = uuid4()
    product = make_product(stock=5, points_price=200, category_id=category_id)
    coupon = make_coupon(discount_type="percentage", discount_value=10, applicable_categories=[str(category_id)])
    fund(user_id, 1000)
    with transaction(db):
        CouponService.claim(db, coupon.id, user_id)

    order = OrderService.create_order(db, user_id, _items((product, 2)), coupon_id=coupon.id)
    assert order.discount_amount == 40
    assert order.final_amount == 360


# ===================== CANCEL =====================

def test_cancel_round_trip_restores_stock_and_points(db, make_product, fund, user_id):
    a = make_product(stock=4, points_price=120)
    b = make_product(stock=1, points_price=80)
    fund(user_id, 500)

    order = OrderService.create_order(db, user_id, _items((a, 2), (b, 1)))
    assert b.status == ProductStatus.OUT_OF_STOCK

    OrderService.cancel_order(db, order.id, user_id)

    assert (a.stock, b.stock) == (4, 1)
    assert (a.sales_count, b.sales_count) == (0, 0)
    assert b.status == ProductStatus.ACTIVE
    assert _balance(db, user_id) == 500
    assert PointsService.verify_account(db, user_id)["consistent"]


def test_cancel_checks_owner_and_state(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)
    order = OrderService.create_order(db, user_id, _items((product, 1)))

    with pytest.raises(OrderNotOwnedError):
        OrderService.cancel_order(db, order.id, uuid4())

    with pytest.raises(OrderNotFoundError):
        OrderService.cancel_order(db, uuid4(), user_id)

    OrderService.confirm_order(db, order.id)
    with pytest.raises(InvalidOrderStateError):
        OrderService.cancel_order(db, order.id, user_id)

    assert product.stock == 4
    assert _balance(db, user_id) == 90


def test_cancel_twice_fails(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)
    order = OrderService.create_order(db, user_id, _items((product, 1)))
    OrderService.cancel_order(db, order.id, user_id)

    with pytest.raises(InvalidOrderStateError):
        OrderService.cancel_order(db, order.id, user_id)
    assert _balance(db, user_id) == 100


# ===================== FULFILLMENT =====================

def test_fulfillment_transitions(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)
    admin_id = uuid4()
    order = OrderService.create_order(db, user_id, _items((product, 1)))

    with pytest.raises(InvalidOrderStateError):
        OrderService.ship_order(db, order.id)

    order = OrderService.confirm_order(db, order.id, admin_id)
    assert order.status == OrderStatus.CONFIRMED
    assert order.confirmed_by == admin_id

    with pytest.raises(InvalidOrderStateError):
        OrderService.confirm_delivery(db, order.id, user_id)

    order = OrderService.ship_order(db, order.id, {"courier_code": "SF", "tracking_number": "SF1"}, admin_id)
    assert order.status == OrderStatus.SHIPPED
    assert order.shipping_info["tracking_number"] == "SF1"
    assert order.shipped_at is not None

    order = OrderService.confirm_delivery(db, order.id, user_id)
    assert order.status == OrderStatus.DELIVERED
    assert order.auto_confirmed is False

    order = OrderService.complete_order(db, order.id, user_id)
    assert order.status == OrderStatus.COMPLETED

    with pytest.raises(InvalidOrderStateError):
        OrderService.confirm_order(db, order.id)

    # Status changes leave stock and points alone
    assert product.stock == 4
    assert _balance(db, user_id) == 90

    actions = db.query(AuditLog).filter(AuditLog.record_id == str(order.id)).all()
    assert sorted(a.after_data["status"] for a in actions) == sorted([
        OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED,
        OrderStatus.DELIVERED, OrderStatus.COMPLETED,
    ])


def test_auto_confirm_delivery(db, make_product, fund, user_id):
    product = make_product(stock=5, points_price=10)
    fund(user_id, 100)

    old = OrderService.create_order(db, user_id, _items((product, 1)))
    recent = OrderService.create_order(db, user_id, _items((product, 1)))
    for order in (old, recent):
        OrderService.confirm_order(db, order.id)
        OrderService.ship_order(db, order.id)

    with transaction(db):
        old.shipped_at = utcnow() - timedelta(days=8)

    assert OrderService.auto_confirm_delivery(db, threshold_days=7) == 1

    assert old.status == OrderStatus.DELIVERED
    assert old.auto_confirmed is True
    assert old.delivered_at is not None
    assert recent.status == OrderStatus.SHIPPED

    with pytest.raises(ValidationError):
        OrderService.auto_confirm_delivery(db, threshold_days=0)


# ===================== REFUND =====================

def test_refund_approved_credits_and_releases(db, make_product, fund, user_id):
    product = make_product(stock=3, points_price=100)
    fund(user_id, 500)
    order = _delivered_order(db, user_id, product, qty=2)
    assert _balance(db, user_id) == 300

    order = OrderService.request_refund(db, order.id, user_id, "damaged")
    assert order.status == OrderStatus.REFUND_REQUESTED
    assert order.refund_info["amount"] == 200
    # Requesting moves nothing yet
    assert _balance(db, user_id) == 300
    assert product.stock == 1

    order = OrderService.process_refund(db, order.id, True, "approved", uuid4())

    assert order.status == OrderStatus.REFUNDED
    assert order.refunded_at is not None
    assert order.refund_info["approved"] is True
    assert _balance(db, user_id) == 500
    assert product.stock == 3
    assert PointsService.verify_account(db, user_id)["consistent"]


def test_partial_refund_amount(db, make_product, fund, user_id):
    product = make_product(stock=3, points_price=100)
    fund(user_id, 500)
    order = _delivered_order(db, user_id, product)
    OrderService.complete_order(db, order.id, user_id)

    with pytest.raises(ValidationError):
        OrderService.request_refund(db, order.id, user_id, "too much", amount=101)
    assert order.status == OrderStatus.COMPLETED

    OrderService.request_refund(db, order.id, user_id, "partly broken", amount=40)
    OrderService.process_refund(db, order.id, True)

    assert _balance(db, user_id) == 440


def test_refund_rejected_has_no_resource_deltas(db, make_product, fund, user_id):
    product = make_product(stock=3, points_price=100)
    fund(user_id, 500)
    order = _delivered_order(db, user_id, product)
    OrderService.request_refund(db, order.id, user_id, "changed my mind")

    balance_before, stock_before = _balance(db, user_id), product.stock
    entries_before = db.query(PointsTransaction).count()

    order = OrderService.process_refund(db, order.id, False, "used item")

    assert order.status == OrderStatus.DELIVERED
    assert order.refund_info["approved"] is False
    assert order.refund_info["admin_reason"] == "used item"
    assert _balance(db, user_id) == balance_before
    assert product.stock == stock_before
    assert db.query(PointsTransaction).count() == entries_before


def test_refund_state_rules(db, make_product, fund, user_id):
    product = make_product(stock=3, points_price=100)
    fund(user_id, 500)
    order = OrderService.create_order(db, user_id, _items((product, 1)))

    with pytest.raises(InvalidOrderStateError):
        OrderService.request_refund(db, order.id, user_id, "not delivered yet")

    # The state is checked before the amount
    with pytest.raises(InvalidOrderStateError):
        OrderService.request_refund(db, order.id, user_id, "not delivered yet", amount=10_000)

    with pytest.raises(InvalidOrderStateError):
        OrderService.process_refund(db, order.id, True)

    assert order.status == OrderStatus.PENDING


# ===================== QUERIES =====================

def test_queries_and_stats(db, make_product, fund, user_id):
    other = uuid4()
    product = make_product(stock=10, points_price=10)
    fund(user_id, 100)
    fund(other, 100)

    mine = OrderService.create_order(db, user_id, _items((product, 1)))
    OrderService.create_order(db, user_id, _items((product, 2)))
    OrderService.create_order(db, other, _items((product, 1)))
    OrderService.cancel_order(db, mine.id, user_id)

    assert OrderService.get_order(db, mine.id, user_id).id == mine.id
    with pytest.raises(OrderNotOwnedError):
        OrderService.get_order(db, mine.id, other)

    orders, total = OrderService.get_user_orders(db, user_id)
    assert total == 2
    orders, total = OrderService.get_user_orders(db, user_id, status=OrderStatus.CANCELLED)
    assert [o.id for o in orders] == [mine.id]

    orders, total = OrderService.get_orders(db, order_number=mine.order_number)
    assert total == 1

    stats = OrderService.get_order_stats(db)
    assert stats["total_orders"] == 3
    assert stats["by_status"][OrderStatus.PENDING] == {"count": 2, "points": 30}
    assert stats["by_status"][OrderStatus.CANCELLED] == {"count": 1, "points": 10}
    assert OrderService.get_order_stats(db, other)["total_orders"] == 1
