"""
Tests for Transition Scheduler.

Tests the background job that fires due journey timers.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.tasks import transition_scheduler
from app.tasks.transition_scheduler import (
    get_scheduler,
    process_due_transitions_job,
    start_transition_scheduler,
    stop_transition_scheduler,
)


class TestSchedulerSetup:
    """Tests for scheduler initialization."""

    def test_get_scheduler_singleton(self):
        """Test that get_scheduler returns the same instance."""
        assert get_scheduler() is get_scheduler()

    @pytest.mark.asyncio
    async def test_start_registers_single_polling_job(self, monkeypatch):
        monkeypatch.setattr(transition_scheduler, "scheduler", None)

        start_transition_scheduler()
        start_transition_scheduler()
        try:
            jobs = get_scheduler().get_jobs()
            assert [job.id for job in jobs] == ["journey_transitions"]
            assert jobs[0].max_instances == 1
        finally:
            stop_transition_scheduler()


class TestProcessDueTransitionsJob:
    """Tests for the polling job itself."""

    @pytest.mark.asyncio
    async def test_job_fires_due_delay(self, test_db: AsyncSession, orchestrator, make_customer, make_journey):
        # The orchestrator fixture runs in 2024, so the job's wall clock finds the delay due
        customer = await make_customer()
        journey = await make_journey()
        enrollment = await orchestrator.enroll(customer.id, journey.id)
        session_factory = async_sessionmaker(test_db.bind, class_=AsyncSession, expire_on_commit=False)

        summary = await process_due_transitions_job(session_factory=session_factory)

        assert summary["processed"] == 1
        assert summary["errors"] == []
        enrollment = await orchestrator.get_enrollment(enrollment.id)
        assert enrollment.current_node_id == "message"

    @pytest.mark.asyncio
    async def test_fatal_error_is_reported(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        summary = await process_due_transitions_job(session_factory=broken_factory)

        assert summary["processed"] == 0
        assert summary["errors"] == [{"error": "database unavailable"}]
