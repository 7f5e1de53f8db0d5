# Jobs Package - Scheduled background tasks
from .maintenance import MaintenanceScheduler, start_scheduler, stop_scheduler, run_auto_confirm, run_coupon_expiry

__all__ = ["MaintenanceScheduler", "start_scheduler", "stop_scheduler", "run_auto_confirm", "run_coupon_expiry"]
