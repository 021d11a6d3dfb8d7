"""
Promptloop CLI - Command line interface for the job runner.

Usage:
    promptloop --help                         Show all commands
    promptloop run-due                        Process due jobs once
    promptloop preview JOB_ID --test-send     Run a job now and deliver it
    promptloop next-run --type daily --time 09:00
    promptloop serve                          Start the API server (with scheduler)
"""

import asyncio
import uuid
from datetime import datetime

import typer

app = typer.Typer(
    name="promptloop",
    help="Promptloop CLI - scheduled prompt job runner",
    no_args_is_help=True,
)


# --- Output helpers ---


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command("run-due")
def run_due(
    max_jobs: int | None = typer.Option(None, "--max-jobs", "-m", help="Max jobs to process"),
    time_budget_ms: int | None = typer.Option(
        None, "--time-budget-ms", "-t", help="Stop claiming new jobs after this many ms"
    ),
):
    """Claim and run every due job (same as one cron tick)."""
    from promptloop.core.logging import setup_logging
    from promptloop.jobs.runner import default_runner_id, run_due_jobs

    runner_id = default_runner_id()
    setup_logging(runner_id)
    result = asyncio.run(
        run_due_jobs(max_jobs=max_jobs, time_budget_ms=time_budget_ms, runner_id=runner_id)
    )

    typer.echo("")
    for key, value in result.as_dict().items():
        typer.echo(f"  {key}: {value}")


@app.command()
def preview(
    job_id: str = typer.Argument(..., help="Job UUID"),
    test_send: bool = typer.Option(False, "--test-send", help="Also deliver to the job's channel"),
):
    """Run a job once, outside its schedule."""
    from promptloop.core.database import AsyncSessionLocal
    from promptloop.core.logging import setup_logging
    from promptloop.jobs.preview import run_job_preview

    setup_logging()

    try:
        parsed = uuid.UUID(job_id)
    except ValueError:
        _print_error(f"Invalid job id: {job_id}")
        raise typer.Exit(1) from None

    async def _run():
        async with AsyncSessionLocal() as db:
            return await run_job_preview(db, parsed, test_send=test_send)

    try:
        run = asyncio.run(_run())
    except Exception as e:
        _print_error(str(e) or e.__class__.__name__)
        raise typer.Exit(1) from e

    _print_success(f"Preview run {run.id} ({run.status.value})")
    if run.delivered_at:
        _print_success(f"Delivered in {run.delivery_attempts} attempt(s)")
    typer.echo("")
    typer.echo(run.output_text or "")


@app.command("next-run")
def next_run(
    schedule_type: str = typer.Option(..., "--type", help="daily, weekly or cron"),
    schedule_time: str | None = typer.Option(None, "--time", help="HH:mm (UTC)"),
    day: int | None = typer.Option(None, "--day", help="Day of week, 0=Sunday..6=Saturday"),
    cron: str | None = typer.Option(None, "--cron", help="Cron expression"),
    base: str | None = typer.Option(
        None, "--from", help="Reference instant (ISO 8601), defaults to now"
    ),
):
    """Print the next trigger instant for a schedule."""
    from promptloop.core.datetime_utils import isoformat_utc, utc_now
    from promptloop.core.schedule import (
        InvalidScheduleError,
        ScheduleDescriptor,
        compute_next_run_at,
    )

    try:
        reference = datetime.fromisoformat(base.replace("Z", "+00:00")) if base else utc_now()
    except ValueError:
        _print_error(f"Invalid --from instant: {base}")
        raise typer.Exit(1) from None

    descriptor = ScheduleDescriptor(
        schedule_type=schedule_type,
        schedule_time=schedule_time,
        day_of_week=day,
        cron=cron,
    )
    try:
        result = compute_next_run_at(descriptor, reference)
    except InvalidScheduleError as e:
        _print_error(str(e))
        raise typer.Exit(1) from e

    typer.echo(isoformat_utc(result))


@app.command()
def migrate():
    """Run database migrations (alembic upgrade head)."""
    import subprocess

    result = subprocess.run(["alembic", "upgrade", "head"], check=False)
    raise typer.Exit(result.returncode)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable hot reload"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to run on"),
):
    """Start the API server."""
    import subprocess

    cmd = ["uvicorn", "promptloop.main:app", "--host", "0.0.0.0", "--port", str(port)]
    if reload:
        cmd.append("--reload")

    subprocess.run(cmd, check=False)


if __name__ == "__main__":
    app()
