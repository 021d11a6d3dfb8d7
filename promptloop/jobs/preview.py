"""
Manual (preview) runs.

A preview runs the same generation pipeline on demand against the current
time and records a run row flagged `is_preview` with no scheduled instant.
It never touches the job's schedule, lock or failure counter.
"""

import uuid

import httpx
from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession

from promptloop.core.datetime_utils import format_run_title, utc_now
from promptloop.core.logging import get_logger
from promptloop.models.job import Job
from promptloop.models.run_history import RunHistory, RunStatus
from promptloop.pipeline.generation import run_generation_pipeline
from promptloop.pipeline.prompt_compile import (
    coerce_string_vars,
    compile_prompt_template,
    normalize_post_prompt_config,
)
from promptloop.services.channels import to_runnable_channel
from promptloop.services.delivery import deliver
from promptloop.services.llm import GenerationOptions, normalize_model, normalize_tool_mode
from promptloop.services.prompt_versions import get_or_create_published_prompt_version
from promptloop.services.quota import check_daily_run_budget
from promptloop.services.run_records import (
    create_running_run,
    deliver_with_receipts,
    finalize_run,
    record_generation,
    truncate_error,
)

logger = get_logger(__name__)


class JobNotFoundError(LookupError):
    pass


async def run_job_preview(
    db: AsyncSession,
    job_id: uuid.UUID,
    test_send: bool = False,
    http_client: httpx.AsyncClient | None = None,
    llm_client: AsyncOpenAI | None = None,
) -> RunHistory:
    """
    Run a job once, outside its schedule.

    Args:
        db: Database session
        job_id: Job to preview
        test_send: Also deliver through the job's channel (ignored for in-app jobs)
        http_client: Optional client for delivery transports
        llm_client: Optional client for the generation service

    Returns:
        The finalized preview run row

    Raises:
        JobNotFoundError: unknown job
        Exception: any budget, generation or delivery error, after the
            preview row has been marked failed
    """
    job = await db.get(Job, job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found")

    pv = await get_or_create_published_prompt_version(db, job.id)
    run = await create_running_run(db, job.id, pv.id, scheduled_for=None, is_preview=True)
    run_id = run.id
    now = utc_now()

    try:
        await check_daily_run_budget(db, job.owner_id, exclude_run_id=run_id)

        variables = coerce_string_vars(pv.variables)
        prompt = compile_prompt_template(pv.template, variables, now=now)
        result = await run_generation_pipeline(
            prompt,
            GenerationOptions(
                model=normalize_model(job.llm_model),
                use_tool=bool(job.use_web_search),
                tool_mode=normalize_tool_mode(job.web_search_mode),
            ),
            variables,
            normalize_post_prompt_config(
                pv.post_prompt_enabled,
                pv.post_prompt if pv.post_prompt is not None else job.post_prompt,
            ),
            now=now,
            client=llm_client,
        )
        await record_generation(db, run, result)

        channel = to_runnable_channel(job) if test_send else None
        if channel is not None:
            title = format_run_title(job.name, now)
            await deliver_with_receipts(
                db,
                run,
                lambda: deliver(
                    channel,
                    title,
                    result.output,
                    citations=result.citations,
                    used_tool=result.used_tool,
                    meta={"job_id": str(job.id), "preview": True},
                    client=http_client,
                ),
            )
    except Exception as e:
        await db.rollback()
        await finalize_run(db, run_id, RunStatus.FAIL, str(e) or e.__class__.__name__)
        await db.commit()
        logger.bind(job_id=str(job_id), error=truncate_error(str(e))).warning("job_preview_failed")
        raise

    await finalize_run(db, run_id, RunStatus.SUCCESS)
    await db.commit()
    await db.refresh(run)
    logger.bind(job_id=str(job_id), run_id=str(run_id)).info("job_preview_succeeded")
    return run
