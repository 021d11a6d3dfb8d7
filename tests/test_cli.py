"""Tests for the command line interface."""

from typer.testing import CliRunner

from promptloop.cli import app

runner = CliRunner()


class TestNextRun:
    """Tests for `promptloop next-run`."""

    def test_daily(self):
        result = runner.invoke(
            app, ["next-run", "--type", "daily", "--time", "09:00", "--from", "2026-01-07T12:00:00Z"]
        )

        assert result.exit_code == 0
        assert result.output.strip() == "2026-01-08T09:00:00.000Z"

    def test_weekly(self):
        result = runner.invoke(
            app,
            ["next-run", "--type", "weekly", "--time", "08:00", "--day", "1", "--from", "2026-01-07T12:00:00Z"],
        )

        assert result.exit_code == 0
        assert result.output.strip() == "2026-01-12T08:00:00.000Z"

    def test_cron(self):
        result = runner.invoke(
            app, ["next-run", "--type", "cron", "--cron", "*/30 * * * *", "--from", "2026-01-07T12:10:00Z"]
        )

        assert result.exit_code == 0
        assert result.output.strip() == "2026-01-07T12:30:00.000Z"

    def test_invalid_schedule(self):
        result = runner.invoke(app, ["next-run", "--type", "daily", "--time", "25:00"])

        assert result.exit_code == 1

    def test_invalid_reference(self):
        result = runner.invoke(
            app, ["next-run", "--type", "daily", "--time", "09:00", "--from", "yesterday"]
        )

        assert result.exit_code == 1


def test_preview_rejects_bad_job_id():
    result = runner.invoke(app, ["preview", "not-a-uuid"])

    assert result.exit_code == 1
