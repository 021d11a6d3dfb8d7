"""
Due job runner.

Run with: python -m promptloop.jobs.runner

Each iteration:
1. Claims the next due job (lock token = claim instant)
2. Compiles the published prompt against the job's scheduled instant
3. Records a `running` run row, unique per (job, scheduled instant)
4. Checks the owner's daily budget, then generates (primary + optional post pass)
5. Delivers with retries and receipts, unless the channel is in-app
6. Advances the schedule and commits the outcome under the lock-token guard

The loop ends when nothing is due, or when the job count or time budget is
spent. Per-job errors never escape; they become failed run rows.
"""

import asyncio
import os
import socket
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Literal

import httpx
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from promptloop.config import get_config
from promptloop.core.database import AsyncSessionLocal
from promptloop.core.datetime_utils import format_run_title, isoformat_utc, utc_now
from promptloop.core.logging import get_logger, setup_logging
from promptloop.core.schedule import ScheduleDescriptor, compute_next_run_at
from promptloop.models.job import Job, PromptVersion
from promptloop.models.run_history import RunHistory, RunStatus
from promptloop.pipeline.generation import PipelineResult, run_generation_pipeline
from promptloop.pipeline.prompt_compile import (
    coerce_string_vars,
    compile_prompt_template,
    normalize_post_prompt_config,
)
from promptloop.services.channels import to_runnable_channel
from promptloop.services.delivery import deliver
from promptloop.services.job_claim import ClaimedJob, claim_next_due_job, release_job
from promptloop.services.llm import GenerationOptions, normalize_model, normalize_tool_mode
from promptloop.services.prompt_versions import get_or_create_published_prompt_version
from promptloop.services.quota import QuotaExceededError, check_daily_run_budget
from promptloop.services.run_records import (
    DuplicateRunError,
    create_running_run,
    deliver_with_receipts,
    finalize_run,
    mark_delivered,
    record_generation,
    truncate_error,
)

logger = get_logger(__name__)

LOCK_LOST_MESSAGE = "Job lock lost before commit"

Outcome = Literal["success", "fail", "duplicate"]


@dataclass
class RunDueJobsResult:
    processed: int = 0
    success: int = 0
    fail: int = 0
    disabled: int = 0
    duplicates: int = 0
    quota_blocked: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class JobRunOutcome:
    outcome: Outcome
    disabled: bool = False
    quota_blocked: bool = False


@dataclass(frozen=True)
class JobSnapshot:
    """Job fields read once after claiming; later writes go through Core updates."""

    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    fail_count: int
    schedule: ScheduleDescriptor


class ScheduleCalculationError(Exception):
    pass


def default_runner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


def snapshot_job(job: Job) -> JobSnapshot:
    return JobSnapshot(
        id=job.id,
        owner_id=job.owner_id,
        name=job.name,
        fail_count=job.fail_count or 0,
        schedule=ScheduleDescriptor(
            schedule_type=job.schedule_type,
            schedule_time=job.schedule_time,
            day_of_week=job.schedule_day_of_week,
            cron=job.schedule_cron,
        ),
    )


def compute_next_run(job: JobSnapshot) -> tuple[datetime, str | None]:
    """Next run from now, or the fallback delay plus an error when the schedule is broken."""
    now = utc_now()
    try:
        return compute_next_run_at(job.schedule, now), None
    except Exception as e:
        fallback = now + timedelta(minutes=get_config().worker.schedule_fallback_minutes)
        return fallback, f"Schedule calculation error: {e}"


def _error_message(error: BaseException) -> str:
    return truncate_error(str(error) or error.__class__.__name__) or ""


def _run_meta(
    job: JobSnapshot,
    pv: PromptVersion,
    scheduled_for: datetime,
    result: PipelineResult,
) -> dict:
    return {
        "job_id": str(job.id),
        "prompt_version_id": str(pv.id),
        "scheduled_for": isoformat_utc(scheduled_for),
        "llm_model": result.model,
        "llm_usage": result.usage,
        "post_prompt_applied": result.post_prompt_applied,
        "post_prompt_warning": result.post_prompt_warning,
    }


async def _execute(
    db: AsyncSession,
    job: Job,
    snapshot: JobSnapshot,
    pv: PromptVersion,
    run: RunHistory,
    scheduled_for: datetime,
    http_client: httpx.AsyncClient | None,
    llm_client: AsyncOpenAI | None,
) -> None:
    """Budget check, generation and delivery for one claimed run."""
    await check_daily_run_budget(db, snapshot.owner_id, exclude_run_id=run.id)

    variables = coerce_string_vars(pv.variables)
    prompt = compile_prompt_template(pv.template, variables, now=scheduled_for)
    post_config = normalize_post_prompt_config(
        pv.post_prompt_enabled,
        pv.post_prompt if pv.post_prompt is not None else job.post_prompt,
    )
    options = GenerationOptions(
        model=normalize_model(job.llm_model),
        use_tool=bool(job.use_web_search),
        tool_mode=normalize_tool_mode(job.web_search_mode),
    )

    result = await run_generation_pipeline(
        prompt, options, variables, post_config, now=scheduled_for, client=llm_client
    )

    await record_generation(db, run, result)

    channel = to_runnable_channel(job)
    if channel is None:
        await mark_delivered(db, run, attempts=0)
        return

    title = format_run_title(snapshot.name, utc_now())
    meta = _run_meta(snapshot, pv, scheduled_for, result)
    await deliver_with_receipts(
        db,
        run,
        lambda: deliver(
            channel,
            title,
            result.output,
            citations=result.citations,
            used_tool=result.used_tool,
            meta=meta,
            client=http_client,
        ),
    )


async def _commit_outcome(
    db: AsyncSession,
    job: JobSnapshot,
    claim: ClaimedJob,
    run_id: uuid.UUID,
    error: BaseException | None,
    next_run_at: datetime,
) -> JobRunOutcome:
    """Release the job and finalize the run in one transaction, guarded by the lock token."""
    worker = get_config().worker
    log = logger.bind(job_id=str(job.id), run_id=str(run_id), next_run_at=str(next_run_at))

    if error is None:
        if await release_job(db, job.id, claim.lock_token, fail_count=0, next_run_at=next_run_at):
            await finalize_run(db, run_id, RunStatus.SUCCESS)
            await db.commit()
            log.info("job_run_succeeded")
            return JobRunOutcome("success")
        return await _lock_lost(db, job, run_id)

    message = _error_message(error)
    quota_blocked = isinstance(error, QuotaExceededError)
    disabled = False

    if quota_blocked:
        values: dict = {"next_run_at": next_run_at}
    else:
        next_fail_count = job.fail_count + 1
        disabled = next_fail_count >= worker.max_fails_before_disable
        values = {"next_run_at": next_run_at, "fail_count": next_fail_count}
        if disabled:
            values["enabled"] = False

    if not await release_job(db, job.id, claim.lock_token, **values):
        return await _lock_lost(db, job, run_id)

    await finalize_run(db, run_id, RunStatus.FAIL, message)
    await db.commit()

    log.bind(error=message, quota_blocked=quota_blocked).warning("job_run_failed")
    if disabled:
        log.bind(fail_count=values["fail_count"]).warning("job_auto_disabled")
    return JobRunOutcome("fail", disabled=disabled, quota_blocked=quota_blocked)


async def _lock_lost(db: AsyncSession, job: JobSnapshot, run_id: uuid.UUID) -> JobRunOutcome:
    await db.rollback()
    await finalize_run(db, run_id, RunStatus.FAIL, LOCK_LOST_MESSAGE)
    await db.commit()
    logger.bind(job_id=str(job.id), run_id=str(run_id)).warning("job_lock_lost")
    return JobRunOutcome("fail")


async def _fail_without_run(
    db: AsyncSession, job: JobSnapshot, claim: ClaimedJob, error: BaseException
) -> JobRunOutcome:
    """Count a failure that happened before a run row could be recorded."""
    next_run_at, _ = compute_next_run(job)
    next_fail_count = job.fail_count + 1
    disabled = next_fail_count >= get_config().worker.max_fails_before_disable
    values: dict = {"next_run_at": next_run_at, "fail_count": next_fail_count}
    if disabled:
        values["enabled"] = False
    await release_job(db, job.id, claim.lock_token, **values)
    await db.commit()
    logger.bind(job_id=str(job.id), error=_error_message(error)).warning("job_run_failed")
    return JobRunOutcome("fail", disabled=disabled)


async def process_claimed_job(
    claim: ClaimedJob,
    session_factory: async_sessionmaker[AsyncSession],
    runner_id: str,
    http_client: httpx.AsyncClient | None = None,
    llm_client: AsyncOpenAI | None = None,
) -> JobRunOutcome:
    """Run one claimed job to a committed outcome."""
    async with session_factory() as db:
        job = await db.get(Job, claim.job_id)
        if job is None:
            logger.bind(job_id=str(claim.job_id)).warning("claimed_job_missing")
            return JobRunOutcome("fail")

        snapshot = snapshot_job(job)
        scheduled_for = claim.scheduled_for
        try:
            pv = await get_or_create_published_prompt_version(db, job.id)
        except Exception as e:
            await db.rollback()
            return await _fail_without_run(db, snapshot, claim, e)

        try:
            run = await create_running_run(
                db, job.id, pv.id, scheduled_for, runner_id=runner_id
            )
        except DuplicateRunError:
            next_run_at, _ = compute_next_run(snapshot)
            await release_job(db, snapshot.id, claim.lock_token, next_run_at=next_run_at)
            await db.commit()
            logger.bind(job_id=str(snapshot.id), scheduled_for=str(scheduled_for)).info(
                "job_run_duplicate"
            )
            return JobRunOutcome("duplicate")

        run_id = run.id
        error: BaseException | None = None
        try:
            await _execute(db, job, snapshot, pv, run, scheduled_for, http_client, llm_client)
        except Exception as e:
            error = e
            await db.rollback()

        next_run_at, schedule_error = compute_next_run(snapshot)
        if schedule_error is not None:
            error = ScheduleCalculationError(schedule_error)

        return await _commit_outcome(db, snapshot, claim, run_id, error, next_run_at)


async def run_due_jobs(
    max_jobs: int | None = None,
    time_budget_ms: int | None = None,
    runner_id: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    http_client: httpx.AsyncClient | None = None,
    llm_client: AsyncOpenAI | None = None,
) -> RunDueJobsResult:
    """
    Process due jobs until nothing is due or a budget is spent.

    Safe to call concurrently from several processes: claiming is the only
    synchronization point and every later write is lock-token guarded.

    Args:
        max_jobs: Stop after this many claimed jobs (worker.max_jobs_per_run)
        time_budget_ms: Stop claiming once this much time has passed
            (worker.time_budget_ms); a job in progress is never interrupted
        runner_id: Recorded on run rows, generated if omitted
        session_factory: Session factory, defaults to the application one
        http_client: Shared client for delivery transports
        llm_client: Shared client for the generation service

    Returns:
        Aggregate counters
    """
    worker = get_config().worker
    max_jobs = worker.max_jobs_per_run if max_jobs is None else max_jobs
    time_budget_ms = worker.time_budget_ms if time_budget_ms is None else time_budget_ms
    runner_id = runner_id or default_runner_id()
    session_factory = session_factory or AsyncSessionLocal

    result = RunDueJobsResult()
    started = time.monotonic()

    with logger.contextualize(runner_id=runner_id):
        while result.processed < max_jobs:
            if (time.monotonic() - started) * 1000 >= time_budget_ms:
                break

            try:
                async with session_factory() as db:
                    claim = await claim_next_due_job(db, worker.lock_stale_minutes)
            except Exception as e:
                logger.bind(error=str(e)).error("job_claim_failed")
                break

            if claim is None:
                break

            try:
                outcome = await process_claimed_job(
                    claim, session_factory, runner_id, http_client, llm_client
                )
            except Exception as e:
                # Datastore failure outside the per-job error handling; the stale
                # lock timeout releases the job
                logger.bind(job_id=str(claim.job_id), error=str(e)).error("job_run_crashed")
                outcome = JobRunOutcome("fail")

            result.processed += 1
            match outcome.outcome:
                case "success":
                    result.success += 1
                case "duplicate":
                    result.duplicates += 1
                case "fail":
                    result.fail += 1
            if outcome.disabled:
                result.disabled += 1
            if outcome.quota_blocked:
                result.quota_blocked += 1

        logger.bind(**result.as_dict()).info("run_due_jobs_completed")
    return result


async def main() -> None:
    """Run one pass over due jobs."""
    runner_id = default_runner_id()
    setup_logging(runner_id)
    result = await run_due_jobs(runner_id=runner_id)
    logger.bind(**result.as_dict()).info("runner_job_completed")


if __name__ == "__main__":
    asyncio.run(main())
