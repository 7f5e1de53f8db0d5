"""
Points Schemas
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from uuid import UUID

class PointsTransfer(BaseModel):
    to_user_id: UUID
    amount: int = Field(..., gt=0)
    description: str = Field("points transfer", max_length=200)

class PointsFreeze(BaseModel):
    amount: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=200)
    source_id: Optional[str] = None

class PointsAdjust(BaseModel):
    user_id: UUID
    amount: int
    reason: str = Field("admin adjustment", max_length=200)

class PointsAdjustItem(BaseModel):
    user_id: UUID
    amount: int

class PointsBatchAdjust(BaseModel):
    adjustments: List[PointsAdjustItem] = Field(..., min_length=1)
    reason: str = Field("admin adjustment", max_length=200)

class PointsAccountResponse(BaseModel):
    user_id: UUID
    balance: int
    frozen_balance: int
    available_balance: int
    total_earned: int
    total_spent: int

    class Config:
        from_attributes = True

class PointsTransactionResponse(BaseModel):
    id: UUID
    type: str
    amount: int
    balance_after: int
    source: str
    source_id: Optional[str]
    description: Optional[str]
    status: str
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
