# scheduler.py — In-process periodic jobs: reminder sweep and due-date scan
import os
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from database import get_db_context
from reminder_engine import sweep, sweep_due_date_automations

logger = logging.getLogger("taskforge.scheduler")

REMINDER_SCHEDULER_ENABLED = os.getenv("REMINDER_SCHEDULER_ENABLED", "true").lower() == "true"
REMINDER_SWEEP_INTERVAL_SECONDS = int(os.getenv("REMINDER_SWEEP_INTERVAL_SECONDS", "60"))
DUE_DATE_SCAN_INTERVAL_SECONDS = int(os.getenv("DUE_DATE_SCAN_INTERVAL_SECONDS", "300"))

# ============================================================
# GLOBAL SAFETY LOCK
# Prevents the scheduler from starting more than once per process
# ============================================================
_scheduler = None


def start_scheduler():
    """Start the AsyncIO scheduler on the running event loop.

    - Respects REMINDER_SCHEDULER_ENABLED
    - No double start (reload, repeated lifespan)
    """
    global _scheduler

    if not REMINDER_SCHEDULER_ENABLED:
        logger.info("Scheduler disabled (REMINDER_SCHEDULER_ENABLED=false)")
        return None

    if _scheduler is not None:
        logger.info("Scheduler already running, skipping initialization")
        return _scheduler

    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        run_reminder_sweep,
        trigger="interval",
        seconds=REMINDER_SWEEP_INTERVAL_SECONDS,
        id="reminder_sweep",
        replace_existing=True,
        max_instances=1,      # single-flight
        coalesce=True,
    )
    _scheduler.add_job(
        run_due_date_scan,
        trigger="interval",
        seconds=DUE_DATE_SCAN_INTERVAL_SECONDS,
        id="due_date_scan",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()

    logger.info(
        f"Scheduler started: reminder sweep every {REMINDER_SWEEP_INTERVAL_SECONDS}s, "
        f"due-date scan every {DUE_DATE_SCAN_INTERVAL_SECONDS}s"
    )
    return _scheduler


def shutdown_scheduler():
    global _scheduler
    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Scheduler stopped")


async def run_reminder_sweep() -> int:
    """Job wrapper; business logic stays in reminder_engine"""
    try:
        async with get_db_context() as db:
            return await sweep(db)
    except Exception:
        logger.exception("Scheduled reminder sweep failed")
        return 0


async def run_due_date_scan() -> int:
    try:
        async with get_db_context() as db:
            return await sweep_due_date_automations(db)
    except Exception:
        logger.exception("Scheduled due-date scan failed")
        return 0
