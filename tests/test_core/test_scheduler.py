"""Tests for the in-process scheduler tick."""

from unittest.mock import AsyncMock, patch

import pytest

from promptloop.core import scheduler
from promptloop.jobs.runner import RunDueJobsResult

pytestmark = pytest.mark.asyncio


class TestScheduler:
    """Tests for start_scheduler and the tick."""

    async def test_disabled_by_settings(self):
        """SCHEDULER_ENABLED=false (the test environment) starts nothing."""
        assert await scheduler.start_scheduler() is None
        assert await scheduler.get_job_schedules() == []

    async def test_tick_runs_due_jobs(self):
        run = AsyncMock(return_value=RunDueJobsResult(processed=2, success=2))
        with patch("promptloop.jobs.runner.run_due_jobs", run):
            await scheduler.run_due_jobs_tick()

        run.assert_awaited_once_with()
