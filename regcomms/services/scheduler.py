"""Background sweeps.

APScheduler interval jobs poll the persisted due times: escalation paths
whose ``next_check_at`` has passed and scheduled notifications whose
reminder or deadline has passed. Nothing is held in memory between runs,
so a restart loses no pending escalation or reminder.
"""

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from regcomms.config import Settings
from regcomms.logging_config import get_logger

if TYPE_CHECKING:
    from regcomms.dependencies import ServiceContainer

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


async def run_escalation_sweep(services: "ServiceContainer") -> None:
    """Check every escalation path that is due."""
    try:
        acted = await services.escalations.process_due_escalations()
    except Exception as e:
        logger.error("Escalation sweep failed", error=str(e))
        return
    if acted:
        logger.info("Escalation sweep completed", paths_advanced=acted)


async def run_deadline_sweep(services: "ServiceContainer") -> None:
    """Fire due deadline reminders, then mark lapsed deadlines missed."""
    reminded = 0
    missed = 0
    try:
        reminded = await services.deadlines.fire_due_reminders()
    except Exception as e:
        logger.error("Deadline reminder sweep failed", error=str(e))
    try:
        missed = await services.deadlines.mark_missed()
    except Exception as e:
        logger.error("Missed deadline sweep failed", error=str(e))
    if reminded or missed:
        logger.info("Deadline sweep completed", reminders_fired=reminded, deadlines_missed=missed)


def start_scheduler(services: "ServiceContainer", settings: Settings) -> AsyncIOScheduler:
    """Start the background sweeps.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_escalation_sweep,
        trigger=IntervalTrigger(seconds=settings.escalation_sweep_interval_seconds),
        args=[services],
        id="escalation_sweep",
        name="Escalation Path Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Scheduled escalation sweep job",
        interval_seconds=settings.escalation_sweep_interval_seconds,
    )

    scheduler.add_job(
        run_deadline_sweep,
        trigger=IntervalTrigger(seconds=settings.deadline_sweep_interval_seconds),
        args=[services],
        id="deadline_sweep",
        name="Regulatory Deadline Sweep",
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        "Scheduled deadline sweep job",
        interval_seconds=settings.deadline_sweep_interval_seconds,
    )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background sweeps."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return scheduler
