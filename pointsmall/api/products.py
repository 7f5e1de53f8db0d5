"""
Product stock API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from pointsmall.core.database import get_db
from pointsmall.services import StockService
from pointsmall.schemas.stock import StockAvailability, StockMovementResponse

products_router = APIRouter(prefix="/products", tags=["products"])


@products_router.get("/{product_id}/availability", response_model=StockAvailability)
def check_availability(
    product_id: UUID,
    quantity: int = Query(1, ge=1),
    db: Session = Depends(get_db)
):
    return StockService.check_availability(db, product_id, quantity)


@products_router.get("/{product_id}/movements", response_model=List[StockMovementResponse])
def stock_movements(
    product_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    return StockService.get_movements(db, product_id=product_id, limit=limit)
