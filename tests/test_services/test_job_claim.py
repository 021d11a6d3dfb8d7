"""Tests for claiming due jobs."""

from datetime import timedelta

import pytest
from sqlalchemy import Update, select, update

from promptloop.core.datetime_utils import utc_now
from promptloop.models.job import Job
from promptloop.services.job_claim import claim_next_due_job, release_job, update_locked_job

pytestmark = pytest.mark.asyncio


async def set_lock(session_factory, job_id, locked_at):
    async with session_factory() as db:
        await db.execute(update(Job).where(Job.id == job_id).values(locked_at=locked_at))
        await db.commit()


class RaceLosingSession:
    """Session wrapper where a rival runner locks the earliest free job
    right before each of our next `races` claim updates."""

    def __init__(self, session, races: int) -> None:
        self._session = session
        self.races = races

    def __getattr__(self, name):
        return getattr(self._session, name)

    async def execute(self, statement, *args, **kwargs):
        if self.races and isinstance(statement, Update):
            self.races -= 1
            rival_id = (
                await self._session.execute(
                    select(Job.id)
                    .where(Job.locked_at.is_(None))
                    .order_by(Job.next_run_at.asc())
                    .limit(1)
                )
            ).scalar_one()
            await self._session.execute(
                update(Job).where(Job.id == rival_id).values(locked_at=utc_now())
            )
        return await self._session.execute(statement, *args, **kwargs)


class TestClaimNextDueJob:
    """Tests for claim_next_due_job."""

    async def test_claims_due_job(self, db_session, job_factory, load_job):
        job = await job_factory()

        claim = await claim_next_due_job(db_session)

        assert claim is not None
        assert claim.job_id == job.id
        assert claim.scheduled_for == job.next_run_at
        assert claim.lock_token.microsecond % 1000 == 0
        assert (await load_job(job.id)).locked_at == claim.lock_token

    async def test_nothing_due(self, db_session, job_factory):
        await job_factory(next_run_at=utc_now() + timedelta(hours=1))
        assert await claim_next_due_job(db_session) is None

    async def test_skips_disabled(self, db_session, job_factory):
        job = await job_factory()
        await db_session.execute(update(Job).where(Job.id == job.id).values(enabled=False))
        await db_session.commit()

        assert await claim_next_due_job(db_session) is None

    async def test_earliest_first(self, db_session, job_factory):
        now = utc_now().replace(microsecond=0)
        later = await job_factory(next_run_at=now - timedelta(minutes=1))
        earlier = await job_factory(next_run_at=now - timedelta(minutes=30))

        first = await claim_next_due_job(db_session)
        second = await claim_next_due_job(db_session)

        assert first.job_id == earlier.id
        assert second.job_id == later.id
        assert await claim_next_due_job(db_session) is None

    async def test_keeps_claiming_after_repeated_lost_races(self, db_session, job_factory, load_job):
        now = utc_now().replace(microsecond=0)
        jobs = [await job_factory(next_run_at=now - timedelta(minutes=10 - i)) for i in range(6)]
        session = RaceLosingSession(db_session, races=5)

        claim = await claim_next_due_job(session)

        assert session.races == 0
        assert claim is not None
        assert claim.job_id == jobs[-1].id
        assert (await load_job(jobs[-1].id)).locked_at == claim.lock_token

    async def test_lost_race_with_nothing_left_returns_none(self, db_session, job_factory):
        await job_factory()
        session = RaceLosingSession(db_session, races=1)

        assert await claim_next_due_job(session) is None

    async def test_locked_job_not_claimed_twice(self, db_session, job_factory):
        await job_factory()
        assert await claim_next_due_job(db_session) is not None
        assert await claim_next_due_job(db_session) is None

    async def test_stale_lock_reclaimed(self, db_session, db_session_factory, job_factory):
        job = await job_factory()
        await set_lock(db_session_factory, job.id, utc_now() - timedelta(minutes=11))

        claim = await claim_next_due_job(db_session, stale_minutes=10)

        assert claim is not None
        assert claim.job_id == job.id

    async def test_fresh_lock_respected(self, db_session, db_session_factory, job_factory):
        job = await job_factory()
        await set_lock(db_session_factory, job.id, utc_now() - timedelta(minutes=2))

        assert await claim_next_due_job(db_session, stale_minutes=10) is None


class TestLockGuard:
    """Tests for lock-token guarded writes."""

    async def test_release_with_token(self, db_session, job_factory, load_job):
        job = await job_factory()
        claim = await claim_next_due_job(db_session)
        next_run = utc_now().replace(microsecond=0) + timedelta(days=1)

        assert await release_job(db_session, job.id, claim.lock_token, next_run_at=next_run)
        await db_session.commit()

        reloaded = await load_job(job.id)
        assert reloaded.locked_at is None
        assert reloaded.next_run_at == next_run

    async def test_stolen_lock_makes_writes_no_ops(
        self, db_session, db_session_factory, job_factory, load_job
    ):
        """Once another runner holds the job, the old token can't write."""
        job = await job_factory()
        first = await claim_next_due_job(db_session)
        await set_lock(db_session_factory, job.id, utc_now() - timedelta(minutes=11))
        second = await claim_next_due_job(db_session)
        assert second is not None

        assert not await update_locked_job(db_session, job.id, first.lock_token, fail_count=5)
        assert not await release_job(db_session, job.id, first.lock_token)
        await db_session.commit()

        reloaded = await load_job(job.id)
        assert reloaded.fail_count == 0
        assert reloaded.locked_at == second.lock_token
