"""Tests for the cron trigger endpoint."""

import pytest
from httpx import AsyncClient

from promptloop.config import Settings, get_settings
from promptloop.main import app

pytestmark = pytest.mark.asyncio


@pytest.fixture
def cron_secret(client):
    """Require a cron secret for the duration of a test."""
    app.dependency_overrides[get_settings] = lambda: Settings(cron_secret="s3cret")
    yield "s3cret"


class TestRunJobs:
    """Tests for GET /api/cron/run-jobs."""

    async def test_runs_due_jobs(self, client: AsyncClient, job_factory, load_job, mock_generate):
        job = await job_factory()

        response = await client.get("/api/cron/run-jobs")

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["processed"] == 1
        assert data["success"] == 1
        assert data["executed_at"].endswith("Z")
        assert data["runner_id"]
        assert (await load_job(job.id)).locked_at is None

    async def test_nothing_due(self, client: AsyncClient, mock_generate):
        response = await client.get("/api/cron/run-jobs")

        assert response.status_code == 200
        assert response.json()["processed"] == 0

    async def test_secret_required_when_configured(self, client: AsyncClient, cron_secret):
        response = await client.get("/api/cron/run-jobs")

        assert response.status_code == 401

    async def test_wrong_secret(self, client: AsyncClient, cron_secret):
        response = await client.get(
            "/api/cron/run-jobs", headers={"Authorization": "Bearer nope"}
        )

        assert response.status_code == 401

    async def test_correct_secret(self, client: AsyncClient, cron_secret, mock_generate):
        response = await client.get(
            "/api/cron/run-jobs", headers={"Authorization": f"Bearer {cron_secret}"}
        )

        assert response.status_code == 200
