"""Tests for the background sweep jobs."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from regcomms.config import Settings
from regcomms.services import scheduler as scheduler_module
from regcomms.services.scheduler import (
    get_scheduler,
    run_deadline_sweep,
    run_escalation_sweep,
    start_scheduler,
    stop_scheduler,
)


def mock_services() -> MagicMock:
    services = MagicMock()
    services.escalations.process_due_escalations = AsyncMock(return_value=2)
    services.deadlines.fire_due_reminders = AsyncMock(return_value=1)
    services.deadlines.mark_missed = AsyncMock(return_value=0)
    return services


class TestEscalationSweep:
    @pytest.mark.asyncio
    async def test_processes_due_paths(self):
        services = mock_services()

        await run_escalation_sweep(services)

        services.escalations.process_due_escalations.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        services = mock_services()
        services.escalations.process_due_escalations.side_effect = RuntimeError("db down")

        await run_escalation_sweep(services)


class TestDeadlineSweep:
    @pytest.mark.asyncio
    async def test_reminders_then_missed(self):
        services = mock_services()

        await run_deadline_sweep(services)

        services.deadlines.fire_due_reminders.assert_awaited_once()
        services.deadlines.mark_missed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reminder_failure_still_marks_missed(self):
        services = mock_services()
        services.deadlines.fire_due_reminders.side_effect = RuntimeError("db down")

        await run_deadline_sweep(services)

        services.deadlines.mark_missed.assert_awaited_once()


class TestSchedulerLifecycle:
    @pytest.mark.asyncio
    async def test_start_registers_both_sweeps(self):
        settings = Settings(
            escalation_sweep_interval_seconds=30,
            deadline_sweep_interval_seconds=300,
        )
        try:
            scheduler = start_scheduler(mock_services(), settings)

            assert get_scheduler() is scheduler
            assert scheduler.running
            job_ids = {job.id for job in scheduler.get_jobs()}
            assert job_ids == {"escalation_sweep", "deadline_sweep"}

            # Starting twice returns the running instance
            assert start_scheduler(mock_services(), settings) is scheduler
        finally:
            stop_scheduler()

        assert get_scheduler() is None
        assert scheduler_module.scheduler is None

    def test_stop_without_start(self):
        stop_scheduler()
        assert get_scheduler() is None
