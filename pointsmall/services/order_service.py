"""
Order Service - Order Lifecycle

Each operation is one atomic unit of work: it takes row locks in a fixed order
(products sorted by id, then the points account, then the coupon claim, then the
order number sequence), applies every resource delta and persists the order's new
status, or rolls all of it back.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID, uuid4
from datetime import timedelta
from decimal import Decimal
import logging

from pointsmall.models import (
    Order, OrderItem, OrderSequence, OrderStatus, AuditLog, Product,
)
from pointsmall.schemas.order import OrderItemCreate
from pointsmall.core.config import settings
from pointsmall.core.database import transaction, utcnow
from pointsmall.core.exceptions import (
    MallError, ValidationError, OrderNotFoundError, OrderNotOwnedError,
    InvalidOrderStateError, InsufficientPointsError, CouponInvalidError,
)
from .points_service import PointsService
from .stock_service import StockService
from .coupon_service import CouponService

logger = logging.getLogger(__name__)


class OrderService:
    """Order lifecycle business logic"""

    # Valid status transitions
    STATUS_TRANSITIONS = {
        OrderStatus.PENDING: [OrderStatus.PAID, OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
        OrderStatus.PAID: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
        OrderStatus.CONFIRMED: [OrderStatus.SHIPPED],
        OrderStatus.SHIPPED: [OrderStatus.DELIVERED],
        OrderStatus.DELIVERED: [OrderStatus.COMPLETED, OrderStatus.REFUND_REQUESTED],
        OrderStatus.COMPLETED: [OrderStatus.REFUND_REQUESTED],
        OrderStatus.REFUND_REQUESTED: [OrderStatus.REFUNDED, OrderStatus.DELIVERED],
        OrderStatus.CANCELLED: [],
        OrderStatus.REFUNDED: [],
    }

    # ===================== QUERIES =====================

    @staticmethod
    def get_order(db: Session, order_id: UUID, user_id: Optional[UUID] = None) -> Order:
        """Get order by ID; with user_id, the order must belong to that user"""
        return OrderService._load_order(db, order_id, user_id)

    @staticmethod
    def get_user_orders(
        db: Session,
        user_id: UUID,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20
    ) -> Tuple[List[Order], int]:
        return OrderService.get_orders(db, status=status, user_id=user_id, page=page, per_page=per_page)

    @staticmethod
    def get_orders(
        db: Session,
        status: Optional[str] = None,
        user_id: Optional[UUID] = None,
        order_number: Optional[str] = None,
        page: int = 1,
        per_page: int = 50
    ) -> Tuple[List[Order], int]:
        """Get orders with filters and pagination"""
        query = db.query(Order)

        if status and status != "all":
            query = query.filter(Order.status == status)

        if user_id:
            query = query.filter(Order.user_id == user_id)

        if order_number:
            query = query.filter(Order.order_number.ilike(f"%{order_number}%"))

        total = query.count()

        orders = query.order_by(Order.created_at.desc(), Order.order_number.desc())\
            .offset((page - 1) * per_page)\
            .limit(per_page)\
            .all()

        return orders, total

    @staticmethod
    def get_order_stats(db: Session, user_id: Optional[UUID] = None) -> dict:
        """Order count and points total per status"""
        query = db.query(
            Order.status,
            func.count(Order.id),
            func.coalesce(func.sum(Order.final_amount), 0)
        )
        if user_id:
            query = query.filter(Order.user_id == user_id)

        by_status = {}
        total_orders = 0
        total_points = 0
        for status, count, points in query.group_by(Order.status).all():
            by_status[status] = {"count": count, "points": int(points)}
            total_orders += count
            total_points += int(points)

        return {
            "total_orders": total_orders,
            "total_points": total_points,
            "by_status": by_status,
        }

    # ===================== CREATE =====================

    @staticmethod
    def create_order(
        db: Session,
        user_id: UUID,
        items: Iterable[OrderItemCreate],
        coupon_id: Optional[UUID] = None,
        shipping_address: Optional[Dict[str, Any]] = None,
        remark: Optional[str] = None
    ) -> Order:
        """
        Create an order in pending.

        Reserves stock for every line, debits the final amount and consumes the
        coupon claim, all in one transaction. Fails with OutOfStockError,
        InsufficientPointsError or CouponInvalidError without touching anything.
        """
        lines = list(items)
        if not lines:
            raise ValidationError("Order must contain at least one item")

        # Aggregate duplicate lines per product
        wanted: Dict[UUID, int] = {}
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError("Quantity must be positive", {"product_id": str(line.product_id)})
            wanted[line.product_id] = wanted.get(line.product_id, 0) + line.quantity

        order_id = uuid4()

        try:
            with transaction(db):
                products = StockService.lock_products(db, wanted.keys())
                for product_id, quantity in wanted.items():
                    StockService.ensure_sellable(products[product_id], quantity)

                points_amount = sum(products[line.product_id].points_price * line.quantity for line in lines)
                total_amount = sum(
                    (Decimal(products[line.product_id].original_price or 0) * line.quantity for line in lines),
                    Decimal("0")
                )

                account = PointsService.get_account(db, user_id, lock=True)

                discount_amount = 0
                coupon_info = None
                if coupon_id:
                    check = CouponService.validate(
                        db, coupon_id, user_id, points_amount,
                        product_ids=wanted.keys(),
                        category_ids=[p.category_id for p in products.values() if p.category_id]
                    )
                    if not check.valid:
                        raise CouponInvalidError(check.reason, {"coupon_id": str(coupon_id)})
                    discount_amount = check.discount_amount
                    coupon_info = {
                        "code": check.coupon.code,
                        "name": check.coupon.name,
                        "discount_type": check.coupon.discount_type,
                        "discount_value": check.coupon.discount_value,
                        "discount_amount": discount_amount,
                    }

                final_amount = max(0, points_amount - discount_amount)
                if account.available_balance < final_amount:
                    raise InsufficientPointsError(
                        "Insufficient points balance",
                        {"available": account.available_balance, "required": final_amount}
                    )

                for product_id in sorted(wanted, key=str):
                    StockService.reserve(db, product_id, wanted[product_id], order_ref=order_id)

                if final_amount > 0:
                    PointsService.debit(
                        db, user_id, final_amount,
                        source="order",
                        source_id=str(order_id),
                        description="Order redemption"
                    )

                if coupon_id:
                    CouponService.consume(db, coupon_id, user_id, order_ref=order_id)

                order = Order(
                    id=order_id,
                    order_number=OrderService._generate_order_number(db),
                    user_id=user_id,
                    status=OrderStatus.PENDING,
                    total_amount=total_amount,
                    points_amount=points_amount,
                    discount_amount=discount_amount,
                    final_amount=final_amount,
                    item_count=sum(wanted.values()),
                    coupon_id=coupon_id,
                    coupon_info=coupon_info,
                    shipping_address=shipping_address or {},
                    remark=remark
                )

                for line_no, line in enumerate(lines, start=1):
                    product = products[line.product_id]
                    order.items.append(OrderItem(
                        product_id=product.id,
                        line_no=line_no,
                        product_name=product.name,
                        product_sku=product.sku,
                        product_image=(product.images or [None])[0],
                        original_price=product.original_price,
                        points_price=product.points_price,
                        quantity=line.quantity,
                        total_points=product.points_price * line.quantity,
                        product_snapshot=OrderService._snapshot(product)
                    ))

                db.add(order)
                db.flush()
                OrderService._audit(db, order, None, OrderStatus.PENDING, user_id)

        except MallError as e:
            logger.warning(f"Order creation failed for user {user_id}: {e.code} {e.message}")
            raise

        logger.info(
            f"Order created: {order.order_number} user={user_id} "
            f"points={points_amount} discount={discount_amount} final={final_amount}"
        )
        db.refresh(order)
        return order

    # ===================== CANCEL =====================

    @staticmethod
    def cancel_order(db: Session, order_id: UUID, user_id: Optional[UUID], reason: str = "cancelled by user") -> Order:
        """Cancel a pending/paid order, returning its stock, points and coupon"""
        try:
            with transaction(db):
                order = OrderService._load_order(db, order_id, user_id, lock=True)
                OrderService._change_status(
                    db, order, OrderStatus.CANCELLED,
                    from_statuses=(OrderStatus.PENDING, OrderStatus.PAID),
                    performed_by=user_id
                )

                OrderService._release_items(db, order, note="order cancelled")

                if order.final_amount > 0:
                    PointsService.credit(
                        db, order.user_id, order.final_amount,
                        source="order_cancel",
                        source_id=str(order.id),
                        description=f"Order cancelled: {order.order_number}"
                    )

                if order.coupon_id:
                    CouponService.reverse(db, order.coupon_id, order.user_id, order_ref=order.id)

                order.cancel_reason = reason
                order.cancelled_at = utcnow()

        except MallError as e:
            logger.warning(f"Order cancel failed for {order_id}: {e.code} {e.message}")
            raise

        logger.info(f"Order cancelled: {order.order_number} refunded={order.final_amount} reason={reason}")
        db.refresh(order)
        return order

    # ===================== FULFILLMENT =====================

    @staticmethod
    def confirm_order(db: Session, order_id: UUID, admin_id: Optional[UUID] = None) -> Order:
        """pending -> confirmed"""
        def apply(order):
            order.confirmed_at = utcnow()
            order.confirmed_by = admin_id

        return OrderService._simple_transition(
            db, order_id, None, OrderStatus.CONFIRMED, (OrderStatus.PENDING,), admin_id, apply
        )

    @staticmethod
    def ship_order(
        db: Session,
        order_id: UUID,
        shipping_info: Optional[Dict[str, Any]] = None,
        admin_id: Optional[UUID] = None
    ) -> Order:
        """confirmed -> shipped"""
        def apply(order):
            order.shipping_info = dict(shipping_info or {})
            order.shipped_at = utcnow()
            order.shipped_by = admin_id

        return OrderService._simple_transition(
            db, order_id, None, OrderStatus.SHIPPED, (OrderStatus.CONFIRMED,), admin_id, apply
        )

    @staticmethod
    def confirm_delivery(db: Session, order_id: UUID, user_id: Optional[UUID] = None) -> Order:
        """shipped -> delivered, confirmed by the buyer"""
        def apply(order):
            order.delivered_at = utcnow()

        return OrderService._simple_transition(
            db, order_id, user_id, OrderStatus.DELIVERED, (OrderStatus.SHIPPED,), user_id, apply
        )

    @staticmethod
    def complete_order(db: Session, order_id: UUID, user_id: Optional[UUID] = None) -> Order:
        """delivered -> completed"""
        def apply(order):
            order.completed_at = utcnow()

        return OrderService._simple_transition(
            db, order_id, user_id, OrderStatus.COMPLETED, (OrderStatus.DELIVERED,), user_id, apply
        )

    @staticmethod
    def auto_confirm_delivery(db: Session, threshold_days: Optional[int] = None) -> int:
        """Move orders shipped more than threshold_days ago to delivered"""
        days = settings.AUTO_CONFIRM_DAYS if threshold_days is None else threshold_days
        if days < 1:
            raise ValidationError("Threshold must be at least one day", {"threshold_days": days})

        cutoff = utcnow() - timedelta(days=days)

        with transaction(db):
            orders = db.query(Order).filter(
                Order.status == OrderStatus.SHIPPED,
                Order.shipped_at < cutoff
            ).order_by(Order.id).with_for_update().all()

            now = utcnow()
            for order in orders:
                OrderService._change_status(db, order, OrderStatus.DELIVERED, (OrderStatus.SHIPPED,), None)
                order.delivered_at = now
                order.auto_confirmed = True

        if orders:
            logger.info(f"Auto-confirmed delivery of {len(orders)} orders shipped before {cutoff:%Y-%m-%d %H:%M}")
        return len(orders)

    # ===================== REFUND =====================

    @staticmethod
    def request_refund(
        db: Session,
        order_id: UUID,
        user_id: Optional[UUID],
        reason: str,
        amount: Optional[int] = None
    ) -> Order:
        """Record a refund request; no points or stock move until it is processed"""
        try:
            with transaction(db):
                order = OrderService._load_order(db, order_id, user_id, lock=True)

                previous = order.status
                OrderService._change_status(
                    db, order, OrderStatus.REFUND_REQUESTED,
                    from_statuses=(OrderStatus.DELIVERED, OrderStatus.COMPLETED),
                    performed_by=user_id
                )

                refund_amount = order.final_amount if amount is None else amount
                if refund_amount < 0 or refund_amount > order.final_amount:
                    raise ValidationError(
                        "Refund amount must be between 0 and the order's final amount",
                        {"amount": refund_amount, "final_amount": order.final_amount}
                    )

                now = utcnow()
                order.refund_requested_at = now
                order.refund_info = {
                    "reason": reason,
                    "amount": refund_amount,
                    "previous_status": previous,
                    "requested_at": now.isoformat(),
                }

        except MallError as e:
            logger.warning(f"Refund request failed for {order_id}: {e.code} {e.message}")
            raise

        logger.info(f"Refund requested: {order.order_number} amount={refund_amount}")
        db.refresh(order)
        return order

    @staticmethod
    def process_refund(
        db: Session,
        order_id: UUID,
        approved: bool,
        reason: str = "",
        admin_id: Optional[UUID] = None
    ) -> Order:
        """
        Approve or reject a refund request.

        Approval credits the requested amount and releases stock for every item.
        Rejection puts the order back in delivered and moves nothing.
        """
        try:
            with transaction(db):
                order = OrderService._load_order(db, order_id, None, lock=True)
                if order.status != OrderStatus.REFUND_REQUESTED:
                    raise InvalidOrderStateError(
                        f"Order is not awaiting a refund decision (status: {order.status})",
                        {"order_id": str(order.id), "status": order.status}
                    )

                refund_info = dict(order.refund_info or {})
                refund_amount = int(refund_info.get("amount", order.final_amount))
                now = utcnow()

                if approved:
                    OrderService._release_items(db, order, note="order refunded")
                    if refund_amount > 0:
                        PointsService.credit(
                            db, order.user_id, refund_amount,
                            source="order_refund",
                            source_id=str(order.id),
                            description=f"Order refunded: {order.order_number}"
                        )
                    OrderService._change_status(db, order, OrderStatus.REFUNDED, (OrderStatus.REFUND_REQUESTED,), admin_id)
                    order.refunded_at = now
                else:
                    OrderService._change_status(db, order, OrderStatus.DELIVERED, (OrderStatus.REFUND_REQUESTED,), admin_id)

                refund_info.update({
                    "approved": approved,
                    "admin_reason": reason,
                    "processed_by": str(admin_id) if admin_id else None,
                    "processed_at": now.isoformat(),
                })
                order.refund_info = refund_info

        except MallError as e:
            logger.warning(f"Refund processing failed for {order_id}: {e.code} {e.message}")
            raise

        logger.info(
            f"Refund {'approved' if approved else 'rejected'}: {order.order_number} "
            f"amount={refund_amount if approved else 0}"
        )
        db.refresh(order)
        return order

    # ===================== HELPERS =====================

    @staticmethod
    def _load_order(db: Session, order_id: UUID, user_id: Optional[UUID] = None, lock: bool = False) -> Order:
        query = db.query(Order).filter(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        order = query.first()
        if not order:
            raise OrderNotFoundError(f"Order not found: {order_id}", {"order_id": str(order_id)})
        if user_id is not None and order.user_id != user_id:
            raise OrderNotOwnedError("Order does not belong to this user", {"order_id": str(order_id)})
        return order

    @staticmethod
    def _change_status(
        db: Session,
        order: Order,
        new_status: str,
        from_statuses: Tuple[str, ...],
        performed_by: Optional[UUID]
    ) -> None:
        current = order.status
        if current not in from_statuses or new_status not in OrderService.STATUS_TRANSITIONS.get(current, []):
            raise InvalidOrderStateError(
                f"Cannot transition from {current} to {new_status}",
                {"order_id": str(order.id), "status": current, "target": new_status}
            )
        order.status = new_status
        OrderService._audit(db, order, current, new_status, performed_by)

    @staticmethod
    def _simple_transition(db, order_id, user_id, new_status, from_statuses, performed_by, apply) -> Order:
        """A status change with no resource deltas"""
        try:
            with transaction(db):
                order = OrderService._load_order(db, order_id, user_id, lock=True)
                OrderService._change_status(db, order, new_status, from_statuses, performed_by)
                apply(order)
        except MallError as e:
            logger.warning(f"Order {order_id} -> {new_status} failed: {e.code} {e.message}")
            raise

        logger.info(f"Order {order.order_number} -> {new_status}")
        db.refresh(order)
        return order

    @staticmethod
    def _release_items(db: Session, order: Order, note: str) -> None:
        """Release stock for every item, locking products in id order"""
        quantities: Dict[UUID, int] = {}
        for item in order.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        StockService.lock_products(db, quantities.keys())
        for product_id in sorted(quantities, key=str):
            StockService.release(db, product_id, quantities[product_id], order_ref=order.id, note=note)

    @staticmethod
    def _audit(db: Session, order: Order, old_status: Optional[str], new_status: str, performed_by: Optional[UUID]) -> None:
        db.add(AuditLog(
            table_name="orders",
            record_id=str(order.id),
            action="CREATE" if old_status is None else "STATUS_CHANGE",
            performed_by=performed_by,
            performed_at=utcnow(),
            before_data={"status": old_status} if old_status else None,
            after_data={"status": new_status, "order_number": order.order_number}
        ))

    @staticmethod
    def _snapshot(product: Product) -> dict:
        """Frozen copy of product metadata at purchase time"""
        return {
            "id": str(product.id),
            "sku": product.sku,
            "name": product.name,
            "description": product.description,
            "category_id": str(product.category_id) if product.category_id else None,
            "images": product.images or [],
            "specifications": product.specifications or {},
            "points_price": product.points_price,
            "original_price": str(product.original_price) if product.original_price is not None else None,
        }

    @staticmethod
    def _generate_order_number(db: Session) -> str:
        """Next number from today's locked sequence row, e.g. PM20240101000001"""
        today = utcnow().strftime("%Y%m%d")

        seq = db.query(OrderSequence).filter(OrderSequence.seq_date == today).with_for_update().first()
        if not seq:
            try:
                with db.begin_nested():
                    db.add(OrderSequence(seq_date=today, last_value=0))
            except IntegrityError:
                # Another transaction opened the day first
                pass
            seq = db.query(OrderSequence).filter(OrderSequence.seq_date == today).with_for_update().one()

        seq.last_value += 1
        return f"{settings.ORDER_NUMBER_PREFIX}{today}{seq.last_value:06d}"
