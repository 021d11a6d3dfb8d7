"""
Run record manager.

Creates and updates RunHistory rows and appends DeliveryAttempt receipts.
A scheduled run row is unique per (job_id, scheduled_for); a second runner
trying to record the same occurrence gets `DuplicateRunError`.
"""

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from promptloop.config import get_config
from promptloop.core.datetime_utils import utc_now
from promptloop.core.logging import get_logger
from promptloop.core.retry import RetryPolicy, error_status, retry_with_backoff
from promptloop.models.run_history import (
    DeliveryAttempt,
    DeliveryAttemptStatus,
    RunHistory,
    RunStatus,
)
from promptloop.pipeline.generation import PipelineResult

logger = get_logger(__name__)


class DuplicateRunError(Exception):
    """A run for this (job, scheduled instant) has already been recorded."""

    def __init__(self, job_id: uuid.UUID, scheduled_for: datetime | None) -> None:
        super().__init__(f"Run already recorded for job {job_id} at {scheduled_for}")
        self.job_id = job_id
        self.scheduled_for = scheduled_for


@dataclass(frozen=True)
class DeliveryOutcome:
    attempts: int
    parts: int


def truncate(text: str | None, max_len: int) -> str | None:
    if text is None:
        return None
    return text if len(text) <= max_len else text[:max_len]


def truncate_error(text: str | None) -> str | None:
    return truncate(text, get_config().worker.error_max)


async def create_running_run(
    db: AsyncSession,
    job_id: uuid.UUID,
    prompt_version_id: uuid.UUID | None,
    scheduled_for: datetime | None,
    runner_id: str | None = None,
    is_preview: bool = False,
) -> RunHistory:
    """
    Insert a run row in `running` state and commit it.

    Raises:
        DuplicateRunError: the (job_id, scheduled_for) pair already exists
    """
    run = RunHistory(
        job_id=job_id,
        prompt_version_id=prompt_version_id,
        scheduled_for=scheduled_for,
        run_at=utc_now(),
        status=RunStatus.RUNNING,
        is_preview=is_preview,
        runner_id=runner_id,
        delivery_attempts=0,
    )
    db.add(run)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateRunError(job_id, scheduled_for) from e
    return run


async def record_generation(db: AsyncSession, run: RunHistory, result: PipelineResult) -> None:
    """Store output and generation metadata on the run."""
    run.output_text = result.output
    run.output_preview = truncate(result.output, get_config().worker.output_preview_max)
    run.llm_model = result.model
    run.llm_usage = result.usage
    run.llm_tool_calls = result.tool_calls
    run.used_web_search = result.used_tool
    run.citations = [c.model_dump(exclude_none=True) for c in result.citations]
    await db.commit()


async def record_delivery_attempt(
    db: AsyncSession,
    run_id: uuid.UUID,
    attempt: int,
    status: DeliveryAttemptStatus,
    status_code: int | None = None,
    error_message: str | None = None,
) -> DeliveryAttempt:
    """Append a delivery receipt. Receipts are never updated."""
    receipt = DeliveryAttempt(
        run_history_id=run_id,
        attempt=attempt,
        status=status,
        status_code=status_code,
        error_message=truncate_error(error_message),
        created_at=utc_now(),
    )
    db.add(receipt)
    await db.commit()
    return receipt


async def mark_delivered(db: AsyncSession, run: RunHistory, attempts: int) -> None:
    run.delivered_at = utc_now()
    run.delivery_attempts = attempts
    run.delivery_last_error = None
    await db.commit()


async def mark_delivery_failed(
    db: AsyncSession, run: RunHistory, attempts: int, error: str
) -> None:
    run.delivery_attempts = attempts
    run.delivery_last_error = truncate_error(error)
    await db.commit()


async def deliver_with_receipts(
    db: AsyncSession,
    run: RunHistory,
    send: Callable[[], Awaitable[int]],
    policy: RetryPolicy | None = None,
) -> DeliveryOutcome:
    """
    Send with retries, writing a receipt for every attempt.

    Each attempt resends the whole message. Retries follow the shared policy
    (retryable status codes only, delivery.max_attempts calls at most). The
    final attempt count and last error are stored on the run.

    Raises:
        Exception: the last delivery error, after it has been recorded
    """
    policy = policy or RetryPolicy(max_attempts=get_config().delivery.max_attempts)
    attempts = 0

    async def _attempt() -> int:
        nonlocal attempts
        attempts += 1
        return await send()

    async def _on_error(attempt: int, error: Exception) -> None:
        status_code = error_status(error)
        await record_delivery_attempt(
            db, run.id, attempt, DeliveryAttemptStatus.FAIL, status_code, str(error)
        )
        logger.bind(
            run_id=str(run.id),
            attempt=attempt,
            status_code=status_code,
            error=str(error)[:200],
        ).warning("delivery_attempt_failed")

    try:
        parts = await retry_with_backoff(
            _attempt, policy=policy, operation_name="deliver", on_error=_on_error
        )
    except Exception as e:
        await mark_delivery_failed(db, run, attempts, str(e))
        raise

    await record_delivery_attempt(db, run.id, attempts, DeliveryAttemptStatus.SUCCESS)
    await mark_delivered(db, run, attempts)
    return DeliveryOutcome(attempts=attempts, parts=parts)


async def finalize_run(
    db: AsyncSession,
    run_id: uuid.UUID,
    status: RunStatus,
    error_message: str | None = None,
) -> bool:
    """
    Move a run out of `running`. Does not commit.

    Returns:
        False if the run was already finalized
    """
    result = await db.execute(
        update(RunHistory)
        .where(RunHistory.id == run_id, RunHistory.status == RunStatus.RUNNING)
        .values(status=status, error_message=truncate_error(error_message), finished_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
