"""
Stock Schemas
"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from uuid import UUID

class StockAvailability(BaseModel):
    product_id: UUID
    available: int
    requested: int
    sufficient: bool

class StockMovementResponse(BaseModel):
    id: UUID
    product_id: UUID
    movement_type: str
    quantity: int
    stock_after: int
    reference_type: Optional[str]
    reference_id: Optional[str]
    note: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
