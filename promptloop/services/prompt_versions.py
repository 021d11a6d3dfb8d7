"""Published prompt versions."""

import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promptloop.core.logging import get_logger
from promptloop.models.job import Job, PromptVersion

logger = get_logger(__name__)


class PromptVersionError(RuntimeError):
    pass


async def get_or_create_published_prompt_version(
    db: AsyncSession, job_id: uuid.UUID
) -> PromptVersion:
    """
    Return the job's published prompt version, publishing one if needed.

    A new version snapshots the job's live prompt fields and is published
    only if no other writer published first; otherwise the snapshot is
    dropped and the winner's version is returned.
    """
    job = await db.get(Job, job_id)
    if job is None:
        raise PromptVersionError("Job not found")

    if job.published_prompt_version_id is not None:
        existing = await db.get(PromptVersion, job.published_prompt_version_id)
        if existing is not None:
            return existing

    created = PromptVersion(
        job_id=job.id,
        template=job.prompt,
        post_prompt=job.post_prompt,
        post_prompt_enabled=job.post_prompt_enabled,
        variables={},
    )
    db.add(created)
    await db.flush()

    result = await db.execute(
        update(Job)
        .where(Job.id == job.id, Job.published_prompt_version_id.is_(None))
        .values(published_prompt_version_id=created.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await db.commit()
        logger.bind(job_id=str(job.id), prompt_version_id=str(created.id)).info(
            "prompt_version_published"
        )
        return created

    await db.execute(delete(PromptVersion).where(PromptVersion.id == created.id))
    winner_id = await db.scalar(select(Job.published_prompt_version_id).where(Job.id == job.id))
    if winner_id is None:
        raise PromptVersionError("Failed to publish prompt version")
    winner = await db.get(PromptVersion, winner_id)
    if winner is None:
        raise PromptVersionError("Published prompt version missing")
    await db.commit()
    return winner
