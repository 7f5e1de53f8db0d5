"""
Points Account & Ledger Models
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Uuid, CheckConstraint
from sqlalchemy.sql import func
from pointsmall.core import Base
from .base import UUIDMixin, TimestampMixin

class PointsTxType:
    EARN = "earn"
    SPEND = "spend"
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"

    CREDITS = (EARN, TRANSFER_IN)
    DEBITS = (SPEND, TRANSFER_OUT)

class PointsAccount(Base, UUIDMixin, TimestampMixin):
    """One per user; balance is the running total of the ledger"""
    __tablename__ = "points_account"
    
    user_id = Column(Uuid, unique=True, nullable=False, index=True)
    
    balance = Column(Integer, nullable=False, default=0)
    frozen_balance = Column(Integer, nullable=False, default=0)
    total_earned = Column(Integer, nullable=False, default=0)
    total_spent = Column(Integer, nullable=False, default=0)
    
    __table_args__ = (
        CheckConstraint("frozen_balance >= 0", name="ck_points_frozen_non_negative"),
        CheckConstraint("frozen_balance <= balance", name="ck_points_frozen_within_balance"),
    )

    @property
    def available_balance(self) -> int:
        return (self.balance or 0) - (self.frozen_balance or 0)

class PointsTransaction(Base, UUIDMixin):
    """Append-only ledger entry, never updated after insert"""
    __tablename__ = "points_transaction"
    
    user_id = Column(Uuid, nullable=False, index=True)
    type = Column(String(20), nullable=False, index=True)  # earn, spend, freeze, unfreeze, transfer_in, transfer_out
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    
    # Source
    source = Column(String(50), nullable=False)  # order, order_cancel, order_refund, transfer, admin_adjustment, freeze, unfreeze
    source_id = Column(String(50), index=True)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="completed")
    extra = Column("metadata", JSON)
    
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
    
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_points_tx_amount_positive"),
    )
