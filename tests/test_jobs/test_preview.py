"""Tests for manual (preview) runs."""

import uuid

import httpx
import pytest

from promptloop.jobs.preview import JobNotFoundError, run_job_preview
from promptloop.models.run_history import RunStatus
from promptloop.schemas.channel import DiscordChannel
from promptloop.services.llm import EmptyOutputError

pytestmark = pytest.mark.asyncio

DISCORD_URL = "https://discord.com/api/webhooks/123/abc"


class TestRunJobPreview:
    """Tests for run_job_preview."""

    async def test_preview_without_send(self, db_session, job_factory, load_job, mock_generate, mock_http):
        job = await job_factory(channel=DiscordChannel(webhook_url=DISCORD_URL), fail_count=2)
        http_client, requests = mock_http(httpx.Response(204))

        run = await run_job_preview(db_session, job.id, http_client=http_client)

        assert run.status == RunStatus.SUCCESS
        assert run.is_preview is True
        assert run.scheduled_for is None
        assert run.output_text == "Generated output"
        assert run.delivered_at is None
        assert requests == []

        # Schedule state is untouched
        reloaded = await load_job(job.id)
        assert reloaded.next_run_at == job.next_run_at
        assert reloaded.fail_count == 2
        assert reloaded.locked_at is None

    async def test_preview_with_test_send(self, db_session, job_factory, mock_generate, mock_http):
        job = await job_factory(name="Morning brief", channel=DiscordChannel(webhook_url=DISCORD_URL))
        http_client, requests = mock_http(httpx.Response(204))

        run = await run_job_preview(db_session, job.id, test_send=True, http_client=http_client)

        assert run.status == RunStatus.SUCCESS
        assert run.delivery_attempts == 1
        assert run.delivered_at is not None
        assert len(requests) == 1

    async def test_repeated_previews_recorded_separately(self, db_session, job_factory, load_runs, mock_generate):
        job = await job_factory()

        await run_job_preview(db_session, job.id)
        await run_job_preview(db_session, job.id)

        assert len(await load_runs(job.id)) == 2

    async def test_failed_preview_recorded_and_raised(
        self, db_session, job_factory, load_runs, load_job, mock_generate
    ):
        mock_generate.side_effect = EmptyOutputError()
        job = await job_factory()

        with pytest.raises(EmptyOutputError):
            await run_job_preview(db_session, job.id)

        [run] = await load_runs(job.id)
        assert run.status == RunStatus.FAIL
        assert run.error_message == "LLM returned empty output"
        assert (await load_job(job.id)).fail_count == 0

    async def test_unknown_job(self, db_session):
        with pytest.raises(JobNotFoundError):
            await run_job_preview(db_session, uuid.uuid4())
