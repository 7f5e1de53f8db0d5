"""
Points Service - Points Ledger

Every mutation locks the user's PointsAccount row (SELECT ... FOR UPDATE) before
reading the balance and writes one append-only PointsTransaction. Methods only
flush; the caller's transaction() decides commit or rollback.
"""
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from typing import List, Optional, Tuple
from uuid import UUID
import logging

from pointsmall.models import PointsAccount, PointsTransaction, PointsTxType
from pointsmall.core.exceptions import (
    MallError, ValidationError, AccountNotFoundError, InsufficientPointsError, InsufficientFrozenPointsError,
)

logger = logging.getLogger(__name__)


class PointsService:
    """Points ledger business logic"""

    @staticmethod
    def get_account(db: Session, user_id: UUID, lock: bool = False) -> PointsAccount:
        """Get a user's account, creating an empty one on first use"""
        query = db.query(PointsAccount).filter(PointsAccount.user_id == user_id)
        if lock:
            query = query.with_for_update()
        account = query.first()
        if account:
            return account

        try:
            with db.begin_nested():
                account = PointsAccount(
                    user_id=user_id,
                    balance=0,
                    frozen_balance=0,
                    total_earned=0,
                    total_spent=0
                )
                db.add(account)
            logger.info(f"Created points account for user {user_id}")
        except IntegrityError:
            # Created concurrently by another transaction
            account = None

        if account is None or lock:
            query = db.query(PointsAccount).filter(PointsAccount.user_id == user_id)
            if lock:
                query = query.with_for_update()
            account = query.one()
        return account

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError("Points amount must be a positive integer", {"amount": amount})

    @staticmethod
    def _append(
        db: Session,
        account: PointsAccount,
        tx_type: str,
        amount: int,
        source: str,
        source_id: Optional[str],
        description: Optional[str],
        metadata: Optional[dict] = None
    ) -> PointsTransaction:
        entry = PointsTransaction(
            user_id=account.user_id,
            type=tx_type,
            amount=amount,
            balance_after=account.balance,
            source=source,
            source_id=str(source_id) if source_id is not None else None,
            description=description,
            status="completed",
            extra=metadata or None
        )
        db.add(entry)
        return entry

    @staticmethod
    def credit(
        db: Session,
        user_id: UUID,
        amount: int,
        source: str,
        source_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        tx_type: str = PointsTxType.EARN
    ) -> PointsTransaction:
        """Add points to a user's balance"""
        PointsService._check_amount(amount)
        account = PointsService.get_account(db, user_id, lock=True)

        account.balance += amount
        account.total_earned += amount
        entry = PointsService._append(db, account, tx_type, amount, source, source_id, description, metadata)
        db.flush()

        logger.info(f"Points credited: user={user_id} +{amount} ({source}) balance={account.balance}")
        return entry

    @staticmethod
    def debit(
        db: Session,
        user_id: UUID,
        amount: int,
        source: str,
        source_id: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
        tx_type: str = PointsTxType.SPEND
    ) -> PointsTransaction:
        """Spend points; frozen points cannot be spent"""
        PointsService._check_amount(amount)
        account = PointsService.get_account(db, user_id, lock=True)

        if account.available_balance < amount:
            raise InsufficientPointsError(
                "Insufficient points balance",
                {"available": account.available_balance, "required": amount}
            )

        account.balance -= amount
        account.total_spent += amount
        entry = PointsService._append(db, account, tx_type, amount, source, source_id, description, metadata)
        db.flush()

        logger.info(f"Points debited: user={user_id} -{amount} ({source}) balance={account.balance}")
        return entry

    @staticmethod
    def freeze(db: Session, user_id: UUID, amount: int, reason: str, source_id: Optional[str] = None) -> PointsTransaction:
        """Move points from available to frozen"""
        PointsService._check_amount(amount)
        account = PointsService.get_account(db, user_id, lock=True)

        if account.available_balance < amount:
            raise InsufficientPointsError(
                "Insufficient available points to freeze",
                {"available": account.available_balance, "required": amount}
            )

        account.frozen_balance += amount
        entry = PointsService._append(db, account, PointsTxType.FREEZE, amount, "freeze", source_id, reason)
        db.flush()

        logger.info(f"Points frozen: user={user_id} {amount} frozen={account.frozen_balance}")
        return entry

    @staticmethod
    def unfreeze(db: Session, user_id: UUID, amount: int, reason: str, source_id: Optional[str] = None) -> PointsTransaction:
        """Move points from frozen back to available"""
        PointsService._check_amount(amount)
        account = PointsService.get_account(db, user_id, lock=True)

        if account.frozen_balance < amount:
            raise InsufficientFrozenPointsError(
                "Insufficient frozen points",
                {"frozen": account.frozen_balance, "required": amount}
            )

        account.frozen_balance -= amount
        entry = PointsService._append(db, account, PointsTxType.UNFREEZE, amount, "unfreeze", source_id, reason)
        db.flush()

        logger.info(f"Points unfrozen: user={user_id} {amount} frozen={account.frozen_balance}")
        return entry

    @staticmethod
    def transfer(
        db: Session,
        from_user_id: UUID,
        to_user_id: UUID,
        amount: int,
        description: str = "points transfer"
    ) -> Tuple[PointsTransaction, PointsTransaction]:
        """Debit one user and credit another in the same unit of work"""
        PointsService._check_amount(amount)
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer points to yourself")

        # Lock both accounts in user id order
        for user_id in sorted([from_user_id, to_user_id], key=str):
            PointsService.get_account(db, user_id, lock=True)

        out_entry = PointsService.debit(
            db, from_user_id, amount,
            source="transfer",
            source_id=str(to_user_id),
            description=f"{description} (to user {to_user_id})",
            tx_type=PointsTxType.TRANSFER_OUT
        )
        in_entry = PointsService.credit(
            db, to_user_id, amount,
            source="transfer",
            source_id=str(from_user_id),
            description=f"{description} (from user {from_user_id})",
            tx_type=PointsTxType.TRANSFER_IN
        )

        logger.info(f"Points transferred: {from_user_id} -> {to_user_id} {amount}")
        return out_entry, in_entry

    @staticmethod
    def adjust(db: Session, user_id: UUID, amount: int, reason: str, admin_id: Optional[UUID] = None) -> PointsTransaction:
        """Admin adjustment: positive credits, negative debits"""
        if amount == 0:
            raise ValidationError("Adjustment amount cannot be zero")
        source_id = str(admin_id) if admin_id else None
        if amount > 0:
            return PointsService.credit(db, user_id, amount, "admin_adjustment", source_id, f"{reason} (+{amount})")
        return PointsService.debit(db, user_id, -amount, "admin_adjustment", source_id, f"{reason} ({amount})")

    @staticmethod
    def batch_adjust(
        db: Session,
        adjustments: List[Tuple[UUID, int]],
        reason: str,
        admin_id: Optional[UUID] = None
    ) -> List[dict]:
        """Apply (user_id, amount) adjustments; a rejected one does not undo the rest"""
        results = []
        for user_id, amount in adjustments:
            try:
                with db.begin_nested():
                    entry = PointsService.adjust(db, user_id, amount, reason, admin_id)
            except MallError as e:
                results.append({
                    "user_id": str(user_id),
                    "amount": amount,
                    "success": False,
                    "code": e.code,
                    "message": e.message,
                })
                continue
            results.append({
                "user_id": str(user_id),
                "amount": amount,
                "success": True,
                "transaction_id": str(entry.id),
                "balance_after": entry.balance_after,
            })

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"Batch points adjustment by {admin_id}: {succeeded}/{len(results)} applied")
        return results

    @staticmethod
    def get_transactions(
        db: Session,
        user_id: UUID,
        tx_type: Optional[str] = None,
        source: Optional[str] = None,
        page: int = 1,
        per_page: int = 20
    ) -> Tuple[List[PointsTransaction], int]:
        """Get ledger entries with filters and pagination"""
        query = db.query(PointsTransaction).filter(PointsTransaction.user_id == user_id)

        if tx_type:
            query = query.filter(PointsTransaction.type == tx_type)

        if source:
            query = query.filter(PointsTransaction.source == source)

        total = query.count()

        entries = query.order_by(PointsTransaction.created_at.desc())\
            .offset((page - 1) * per_page)\
            .limit(per_page)\
            .all()

        return entries, total

    @staticmethod
    def replay_balance(db: Session, user_id: UUID) -> int:
        """Recompute the balance from the ledger alone"""
        rows = db.query(
            PointsTransaction.type,
            func.coalesce(func.sum(PointsTransaction.amount), 0)
        ).filter(
            PointsTransaction.user_id == user_id
        ).group_by(PointsTransaction.type).all()

        totals = {tx_type: int(total) for tx_type, total in rows}
        credits = sum(totals.get(t, 0) for t in PointsTxType.CREDITS)
        debits = sum(totals.get(t, 0) for t in PointsTxType.DEBITS)
        return credits - debits

    @staticmethod
    def verify_account(db: Session, user_id: UUID) -> dict:
        """Check the cached account totals against the ledger"""
        account = db.query(PointsAccount).filter(PointsAccount.user_id == user_id).first()
        replayed = PointsService.replay_balance(db, user_id)
        if not account:
            if db.query(PointsTransaction).filter(PointsTransaction.user_id == user_id).count() == 0:
                raise AccountNotFoundError(f"Points account not found: {user_id}", {"user_id": str(user_id)})
            return {"user_id": str(user_id), "exists": False, "replayed_balance": replayed, "consistent": False}

        consistent = (
            account.balance == account.total_earned - account.total_spent == replayed
            and 0 <= account.frozen_balance <= account.balance
        )
        if not consistent:
            logger.error(f"Points account inconsistent: user={user_id} balance={account.balance} replayed={replayed}")

        return {
            "user_id": str(user_id),
            "exists": True,
            "balance": account.balance,
            "frozen_balance": account.frozen_balance,
            "total_earned": account.total_earned,
            "total_spent": account.total_spent,
            "replayed_balance": replayed,
            "consistent": consistent,
        }
