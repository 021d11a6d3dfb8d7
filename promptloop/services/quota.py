"""Per-owner daily run budget."""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from promptloop.config import get_config
from promptloop.core.datetime_utils import start_of_utc_day
from promptloop.models.job import Job
from promptloop.models.run_history import RunHistory
from promptloop.models.user import User


class QuotaExceededError(Exception):
    """The owner has used up today's run budget."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Daily run limit exceeded ({limit})")
        self.limit = limit


async def daily_run_limit(db: AsyncSession, owner_id: uuid.UUID) -> int:
    override = await db.scalar(select(User.daily_run_limit).where(User.id == owner_id))
    return override if override is not None else get_config().quota.daily_run_limit


async def count_runs_today(
    db: AsyncSession,
    owner_id: uuid.UUID,
    exclude_run_id: uuid.UUID | None = None,
) -> int:
    """Runs (scheduled and preview) of the owner's jobs since UTC midnight."""
    query = (
        select(func.count(RunHistory.id))
        .join(Job, Job.id == RunHistory.job_id)
        .where(Job.owner_id == owner_id, RunHistory.run_at >= start_of_utc_day())
    )
    if exclude_run_id is not None:
        query = query.where(RunHistory.id != exclude_run_id)
    return await db.scalar(query) or 0


async def check_daily_run_budget(
    db: AsyncSession,
    owner_id: uuid.UUID,
    exclude_run_id: uuid.UUID | None = None,
) -> None:
    """
    Raise if the owner cannot start another run today.

    Args:
        db: Database session
        owner_id: Job owner
        exclude_run_id: The caller's own freshly created run row, not counted

    Raises:
        QuotaExceededError: when today's count has reached the limit
    """
    limit = await daily_run_limit(db, owner_id)
    used = await count_runs_today(db, owner_id, exclude_run_id)
    if used >= limit:
        raise QuotaExceededError(limit)
