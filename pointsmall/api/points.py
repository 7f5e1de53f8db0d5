"""
Points API Endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID

from pointsmall.core.database import get_db, transaction
from pointsmall.core.retry import run_with_retry
from pointsmall.services import PointsService
from pointsmall.schemas.points import (
    PointsTransfer, PointsFreeze, PointsAdjust, PointsBatchAdjust, PointsAccountResponse, PointsTransactionResponse,
)
from .deps import get_current_user_id, get_admin_id

points_router = APIRouter(tags=["points"])


def _in_transaction(db: Session, operation):
    """Run a standalone ledger mutation as its own unit of work"""
    def run():
        with transaction(db):
            result = operation()
        return result
    return run_with_retry(run)


@points_router.get("/points/account", response_model=PointsAccountResponse)
def get_account(user_id: UUID = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _in_transaction(db, lambda: PointsService.get_account(db, user_id))


@points_router.get("/points/transactions")
def list_transactions(
    type: Optional[str] = Query(None),
    source: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    entries, total = PointsService.get_transactions(db, user_id, type, source, page, per_page)
    return {
        "transactions": [PointsTransactionResponse.model_validate(e) for e in entries],
        "total": total,
        "page": page,
        "per_page": per_page
    }


@points_router.post("/points/transfer")
def transfer_points(
    data: PointsTransfer,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    out_entry, in_entry = _in_transaction(
        db, lambda: PointsService.transfer(db, user_id, data.to_user_id, data.amount, data.description)
    )
    return {
        "transfer_out": PointsTransactionResponse.model_validate(out_entry),
        "transfer_in": PointsTransactionResponse.model_validate(in_entry),
    }


@points_router.post("/points/freeze", response_model=PointsAccountResponse)
def freeze_points(
    data: PointsFreeze,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    _in_transaction(db, lambda: PointsService.freeze(db, user_id, data.amount, data.reason, data.source_id))
    return PointsService.get_account(db, user_id)


@points_router.post("/points/unfreeze", response_model=PointsAccountResponse)
def unfreeze_points(
    data: PointsFreeze,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    _in_transaction(db, lambda: PointsService.unfreeze(db, user_id, data.amount, data.reason, data.source_id))
    return PointsService.get_account(db, user_id)


# ===================== BACK OFFICE =====================

@points_router.post("/admin/points/adjust", response_model=PointsTransactionResponse)
def adjust_points(
    data: PointsAdjust,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    return _in_transaction(db, lambda: PointsService.adjust(db, data.user_id, data.amount, data.reason, admin_id))


@points_router.get("/admin/points/{user_id}/verify")
def verify_account(user_id: UUID, db: Session = Depends(get_db)):
    return PointsService.verify_account(db, user_id)


@points_router.post("/admin/points/batch-adjust")
def batch_adjust_points(
    data: PointsBatchAdjust,
    admin_id: Optional[UUID] = Depends(get_admin_id),
    db: Session = Depends(get_db)
):
    adjustments = [(item.user_id, item.amount) for item in data.adjustments]
    results = _in_transaction(db, lambda: PointsService.batch_adjust(db, adjustments, data.reason, admin_id))
    succeeded = sum(1 for r in results if r["success"])
    return {"total": len(results), "success": succeeded, "failed": len(results) - succeeded, "results": results}
