"""Transition Scheduler - Fires due journey timers.

Delays, event-wait timeouts, action timeouts, exit-path waits and goal
windows are stored as pending transitions. This job polls for the ones
that are due and hands them to the orchestrator, which re-checks each
timer against the enrollment before applying it.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import settings
from app.database import async_session_maker
from app.middleware.correlation import correlation_scope
from app.services.journeys.enrollment_locks import EnrollmentLockRegistry
from app.services.journeys.journey_orchestrator import JourneyOrchestrator
from app.services.journeys.segment_cache import SegmentMembershipCache

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def process_due_transitions_job(
    segment_cache: Optional[SegmentMembershipCache] = None,
    locks: Optional[EnrollmentLockRegistry] = None,
    session_factory=async_session_maker,
) -> dict:
    """
    Main job: fire every pending transition that is due.

    Failures of single transitions are collected by the orchestrator; a
    failure of the whole run is logged and reported in the summary.
    """
    with correlation_scope("timers"):
        logger.debug("Checking for due journey transitions...")
        try:
            async with session_factory() as db:
                orchestrator = JourneyOrchestrator(db, segment_cache=segment_cache, locks=locks)
                summary = await orchestrator.process_due_transitions(limit=settings.TRANSITION_BATCH_SIZE)
        except Exception as e:
            logger.error(f"Fatal error in transition run: {e}", exc_info=True)
            return {"processed": 0, "skipped": 0, "errors": [{"error": str(e)}], "total_due": 0}

        if summary["errors"]:
            logger.warning(f"{len(summary['errors'])} transitions failed this run")
        return summary


def start_transition_scheduler(
    segment_cache: Optional[SegmentMembershipCache] = None,
    locks: Optional[EnrollmentLockRegistry] = None,
):
    """Start polling for due transitions every TRANSITION_POLL_SECONDS."""
    global scheduler

    scheduler = get_scheduler()
    scheduler.add_job(
        process_due_transitions_job,
        IntervalTrigger(seconds=settings.TRANSITION_POLL_SECONDS),
        kwargs={"segment_cache": segment_cache, "locks": locks},
        id="journey_transitions",
        name="Fire due journey transitions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info(f"Transition scheduler started (every {settings.TRANSITION_POLL_SECONDS}s)")


def stop_transition_scheduler():
    """Stop the transition scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Transition scheduler stopped")


async def run_transitions_now(
    segment_cache: Optional[SegmentMembershipCache] = None,
    locks: Optional[EnrollmentLockRegistry] = None,
) -> dict:
    """Manually trigger a transition run (for testing/admin use)."""
    logger.info("Manual transition run triggered")
    summary = await process_due_transitions_job(segment_cache=segment_cache, locks=locks)
    return {"status": "completed", **summary}
