"""
Maintenance Scheduler - periodic sweeps over orders and coupons
"""
from typing import Callable, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from pointsmall.core.config import settings
from pointsmall.core.database import SessionLocal, transaction
from pointsmall.core.exceptions import MallError
from pointsmall.services import OrderService, CouponService

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None


def run_auto_confirm(session_factory: Callable[[], Session] = SessionLocal, threshold_days: Optional[int] = None) -> int:
    """Deliver orders that have sat in shipped past the threshold"""
    db = session_factory()
    try:
        count = OrderService.auto_confirm_delivery(db, threshold_days)
        logger.info(f"Auto-confirm sweep finished: {count} orders delivered")
        return count
    except MallError as e:
        logger.error(f"Auto-confirm sweep failed: {e.code} {e.message}")
        return 0
    finally:
        db.close()


def run_coupon_expiry(session_factory: Callable[[], Session] = SessionLocal) -> dict:
    """Expire lapsed coupon claims and coupons"""
    db = session_factory()
    try:
        with transaction(db):
            result = CouponService.expire_coupons(db)
        return result
    except MallError as e:
        logger.error(f"Coupon expiry sweep failed: {e.code} {e.message}")
        return {"claims_expired": 0, "coupons_expired": 0}
    finally:
        db.close()


class MaintenanceScheduler:
    """
    Runs the auto-confirm and coupon expiry sweeps on fixed intervals
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.scheduler = AsyncIOScheduler()
        self.session_factory = session_factory
        self.is_running = False

    def start(self):
        """Start the scheduler"""
        if self.is_running:
            return

        self.scheduler.add_job(
            func=run_auto_confirm,
            trigger=IntervalTrigger(minutes=settings.AUTO_CONFIRM_INTERVAL_MINUTES),
            id="auto_confirm_delivery",
            name="Auto-confirm delivery",
            kwargs={"session_factory": self.session_factory, "threshold_days": settings.AUTO_CONFIRM_DAYS},
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            func=run_coupon_expiry,
            trigger=IntervalTrigger(minutes=settings.COUPON_EXPIRY_INTERVAL_MINUTES),
            id="expire_coupons",
            name="Expire coupons",
            kwargs={"session_factory": self.session_factory},
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self.is_running = True
        logger.info(
            f"Maintenance scheduler started: auto-confirm every {settings.AUTO_CONFIRM_INTERVAL_MINUTES}m, "
            f"coupon expiry every {settings.COUPON_EXPIRY_INTERVAL_MINUTES}m"
        )

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Maintenance scheduler stopped")


# ========== Global Functions ==========

def get_scheduler() -> "MaintenanceScheduler":
    """Get or create the global scheduler instance"""
    global _scheduler
    if _scheduler is None:
        _scheduler = MaintenanceScheduler()
    return _scheduler


def start_scheduler():
    """Start the global scheduler"""
    scheduler = get_scheduler()
    scheduler.start()


def stop_scheduler():
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
