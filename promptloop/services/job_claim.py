"""
Claiming due jobs.

A claim selects the earliest due job that is unlocked (or whose lock is
stale), skipping rows another runner has locked, and stamps `locked_at` with
a fresh token. Every later write to the job is conditioned on that token, so
a runner whose lock was taken over turns its writes into no-ops.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promptloop.config import get_config
from promptloop.core.datetime_utils import lock_token_now, utc_now
from promptloop.core.logging import get_logger
from promptloop.models.job import Job

logger = get_logger(__name__)


@dataclass(frozen=True)
class ClaimedJob:
    job_id: uuid.UUID
    lock_token: datetime
    scheduled_for: datetime


def _due_filter(now: datetime, stale_before: datetime) -> list[Any]:
    return [
        Job.enabled.is_(True),
        Job.next_run_at.is_not(None),
        Job.next_run_at <= now,
        or_(Job.locked_at.is_(None), Job.locked_at < stale_before),
    ]


async def claim_next_due_job(
    db: AsyncSession,
    stale_minutes: int | None = None,
) -> ClaimedJob | None:
    """
    Lock the next due job for this runner.

    A lost race means another runner took that row; the select is repeated
    until a claim sticks or no due row is left.

    Args:
        db: Database session (committed on return)
        stale_minutes: Age after which an existing lock is reclaimable

    Returns:
        ClaimedJob, or None when nothing is due
    """
    if stale_minutes is None:
        stale_minutes = get_config().worker.lock_stale_minutes

    while True:
        now = utc_now()
        stale_before = now - timedelta(minutes=stale_minutes)

        row = (
            await db.execute(
                select(Job.id, Job.locked_at, Job.next_run_at)
                .where(*_due_filter(now, stale_before))
                .order_by(Job.next_run_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
        ).first()
        if row is None:
            await db.commit()
            return None

        token = lock_token_now()
        previous = Job.locked_at.is_(None) if row.locked_at is None else Job.locked_at == row.locked_at
        result = await db.execute(
            update(Job)
            .where(Job.id == row.id, previous, *_due_filter(now, stale_before))
            .values(locked_at=token)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        if result.rowcount == 1:
            logger.bind(
                job_id=str(row.id),
                scheduled_for=str(row.next_run_at),
                reclaimed_stale=row.locked_at is not None,
            ).info("job_claimed")
            return ClaimedJob(job_id=row.id, lock_token=token, scheduled_for=row.next_run_at)

        # Another runner claimed it between our read and write
        logger.bind(job_id=str(row.id)).debug("job_claim_lost_race")


async def update_locked_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    lock_token: datetime,
    **values: Any,
) -> bool:
    """Apply `values` to the job only if it still holds `lock_token`. Does not commit."""
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.locked_at == lock_token)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    lock_token: datetime,
    **values: Any,
) -> bool:
    """Clear the lock (plus any extra `values`) under the lock-token guard. Does not commit."""
    return await update_locked_job(db, job_id, lock_token, locked_at=None, **values)
