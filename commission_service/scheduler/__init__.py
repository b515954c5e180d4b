"""Background scheduler."""

from commission_service.scheduler.jobs import scheduler, settlement_job, setup_scheduler

__all__ = ["scheduler", "settlement_job", "setup_scheduler"]
