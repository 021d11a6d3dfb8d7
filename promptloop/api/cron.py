"""External trigger for the due-job runner."""

from fastapi import APIRouter
from pydantic import BaseModel

from promptloop.core.datetime_utils import isoformat_utc, utc_now
from promptloop.dependencies import CronAuthorized, SessionFactory
from promptloop.jobs.runner import default_runner_id, run_due_jobs

router = APIRouter()


class RunDueJobsResponse(BaseModel):
    """Aggregate counters from one runner invocation."""

    ok: bool
    runner_id: str
    executed_at: str
    processed: int
    success: int
    fail: int
    disabled: int
    duplicates: int
    quota_blocked: int


@router.get("/cron/run-jobs", response_model=RunDueJobsResponse)
async def run_jobs(_: CronAuthorized, session_factory: SessionFactory) -> RunDueJobsResponse:
    """
    Process due jobs once.

    Meant to be hit on a fixed interval by an external scheduler. Safe to call
    concurrently or redundantly.
    """
    runner_id = default_runner_id()
    result = await run_due_jobs(runner_id=runner_id, session_factory=session_factory)
    return RunDueJobsResponse(
        ok=True,
        runner_id=runner_id,
        executed_at=isoformat_utc(utc_now()),
        **result.as_dict(),
    )
