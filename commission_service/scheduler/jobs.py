"""
Background job definitions using APScheduler.

Jobs include:
- Commission settlement
"""

import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from commission_service.config import settings
from commission_service.db import get_db_context
from commission_service.services.commission import settle_commissions_before
from commission_service.services.rule_selector import utc_now

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def settlement_job():
    """Settle commissions older than the settlement delay."""
    logger.debug("Running settlement job")
    cutoff = utc_now() - timedelta(hours=settings.settlement_delay_hours)
    try:
        async with get_db_context() as db:
            settled = await settle_commissions_before(db, cutoff)
            if settled:
                logger.info(f"Settlement job: settled {settled} commissions")
    except Exception as e:
        logger.error(f"Settlement job error: {e}")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        settlement_job,
        trigger=IntervalTrigger(minutes=settings.settlement_interval_minutes),
        id="commission_settlement",
        name="Settle collected commissions",
        replace_existing=True,
    )

    logger.info("Scheduler configured with jobs")
