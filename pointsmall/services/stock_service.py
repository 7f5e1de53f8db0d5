"""
Stock Service - Inventory Counter
"""
from sqlalchemy.orm import Session
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging

from pointsmall.models import Product, ProductStatus, StockLedger
from pointsmall.schemas.stock import StockAvailability
from pointsmall.core.exceptions import (
    ValidationError, ProductNotFoundError, ProductUnavailableError, OutOfStockError,
)

logger = logging.getLogger(__name__)


class StockService:
    """Stock/Inventory business logic"""

    @staticmethod
    def _get_product(db: Session, product_id: UUID, lock: bool = False) -> Product:
        query = db.query(Product).filter(Product.id == product_id)
        if lock:
            query = query.with_for_update()
        product = query.first()
        if not product:
            raise ProductNotFoundError(f"Product not found: {product_id}", {"product_id": str(product_id)})
        return product

    @staticmethod
    def ensure_sellable(product: Product, quantity: int) -> None:
        """Raise unless the product can be sold in this quantity"""
        if product.status in (ProductStatus.INACTIVE, ProductStatus.DELETED):
            raise ProductUnavailableError(
                f"Product is not available: {product.name}",
                {"product_id": str(product.id), "status": product.status}
            )
        if product.stock < quantity:
            raise OutOfStockError(
                f"Insufficient stock for {product.name}",
                {"product_id": str(product.id), "available": product.stock, "requested": quantity}
            )

    @staticmethod
    def check_availability(db: Session, product_id: UUID, quantity: int = 1) -> StockAvailability:
        """Read-only stock check; fails if the product is not active"""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", {"quantity": quantity})
        product = StockService._get_product(db, product_id)
        if product.status != ProductStatus.ACTIVE:
            raise ProductUnavailableError(
                f"Product is not available: {product.name}",
                {"product_id": str(product.id), "status": product.status}
            )
        return StockAvailability(
            product_id=product.id,
            available=product.stock,
            requested=quantity,
            sufficient=product.stock >= quantity
        )

    @staticmethod
    def lock_products(db: Session, product_ids: Iterable[UUID]) -> Dict[UUID, Product]:
        """
        Lock product rows in ascending id order.

        All writers take product locks in this order before any other lock, so
        two orders touching the same products cannot deadlock.
        """
        locked = {}
        for product_id in sorted(set(product_ids), key=str):
            locked[product_id] = StockService._get_product(db, product_id, lock=True)
        return locked

    @staticmethod
    def reserve(db: Session, product_id: UUID, quantity: int, order_ref: Optional[str] = None) -> Product:
        """Decrement stock for an order; flips to out_of_stock at exactly zero"""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", {"quantity": quantity})
        product = StockService._get_product(db, product_id, lock=True)
        StockService.ensure_sellable(product, quantity)

        product.stock -= quantity
        product.sales_count = (product.sales_count or 0) + quantity
        if product.stock == 0:
            product.status = ProductStatus.OUT_OF_STOCK

        db.add(StockLedger(
            product_id=product.id,
            movement_type="RESERVE",
            quantity=quantity,
            stock_after=product.stock,
            reference_type="ORDER" if order_ref else None,
            reference_id=str(order_ref) if order_ref else None
        ))
        db.flush()

        logger.info(f"Stock reserved: product={product.id} -{quantity} remaining={product.stock} order={order_ref}")
        return product

    @staticmethod
    def release(db: Session, product_id: UUID, quantity: int, order_ref: Optional[str] = None, note: Optional[str] = None) -> Product:
        """Return stock to a product; an out_of_stock product becomes active again"""
        if quantity <= 0:
            raise ValidationError("Quantity must be positive", {"quantity": quantity})
        product = StockService._get_product(db, product_id, lock=True)

        product.stock += quantity
        product.sales_count = max(0, (product.sales_count or 0) - quantity)
        if product.status == ProductStatus.OUT_OF_STOCK and product.stock > 0:
            product.status = ProductStatus.ACTIVE

        db.add(StockLedger(
            product_id=product.id,
            movement_type="RELEASE",
            quantity=quantity,
            stock_after=product.stock,
            reference_type="ORDER" if order_ref else None,
            reference_id=str(order_ref) if order_ref else None,
            note=note
        ))
        db.flush()

        logger.info(f"Stock released: product={product.id} +{quantity} stock={product.stock} order={order_ref}")
        return product

    @staticmethod
    def get_movements(
        db: Session,
        product_id: Optional[UUID] = None,
        reference_id: Optional[str] = None,
        limit: int = 50
    ) -> List[StockLedger]:
        """Get recent stock movements"""
        query = db.query(StockLedger)

        if product_id:
            query = query.filter(StockLedger.product_id == product_id)

        if reference_id:
            query = query.filter(StockLedger.reference_id == str(reference_id))

        return query.order_by(StockLedger.created_at.desc()).limit(limit).all()
