"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-16

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create enums with conditional check (Postgres doesn't support IF NOT EXISTS for TYPE)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE channeltype AS ENUM ('discord', 'telegram', 'webhook', 'in_app');
        EXCEPTION WHEN duplicate_object THEN NULL;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE runstatus AS ENUM ('running', 'success', 'fail');
        EXCEPTION WHEN duplicate_object THEN NULL;
        END $$;
    """)
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE deliveryattemptstatus AS ENUM ('success', 'fail');
        EXCEPTION WHEN duplicate_object THEN NULL;
        END $$;
    """)

    # Reference enums without auto-creating them
    channel_type_enum = postgresql.ENUM(
        "discord", "telegram", "webhook", "in_app", name="channeltype", create_type=False
    )
    run_status_enum = postgresql.ENUM(
        "running", "success", "fail", name="runstatus", create_type=False
    )
    attempt_status_enum = postgresql.ENUM(
        "success", "fail", name="deliveryattemptstatus", create_type=False
    )

    # Users table
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("daily_run_limit", sa.Integer, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # Jobs table (FK to prompt_versions added after that table exists)
    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("prompt", sa.Text, nullable=False),
        sa.Column("post_prompt", sa.Text, nullable=True),
        sa.Column("post_prompt_enabled", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("llm_model", sa.String(100), nullable=True),
        sa.Column("use_web_search", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("web_search_mode", sa.String(16), nullable=True),
        sa.Column("schedule_type", sa.String(16), nullable=False),
        sa.Column("schedule_time", sa.String(5), nullable=True),
        sa.Column("schedule_day_of_week", sa.Integer, nullable=True),
        sa.Column("schedule_cron", sa.String(120), nullable=True),
        sa.Column("channel_type", channel_type_enum, nullable=False),
        sa.Column("channel_config", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("next_run_at", sa.DateTime, nullable=True),
        sa.Column("locked_at", sa.DateTime, nullable=True),
        sa.Column("fail_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("published_prompt_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_jobs_enabled_next_run_at", "jobs", ["enabled", "next_run_at"])

    # Prompt versions table
    op.create_table(
        "prompt_versions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("template", sa.Text, nullable=False),
        sa.Column("post_prompt", sa.Text, nullable=True),
        sa.Column("post_prompt_enabled", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("variables", sa.JSON, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_foreign_key(
        "fk_jobs_published_prompt_version_id",
        "jobs",
        "prompt_versions",
        ["published_prompt_version_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # Run histories table
    op.create_table(
        "run_histories",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "prompt_version_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("prompt_versions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("scheduled_for", sa.DateTime, nullable=True),
        sa.Column("run_at", sa.DateTime, nullable=False, server_default=sa.func.now(), index=True),
        sa.Column("finished_at", sa.DateTime, nullable=True),
        sa.Column("status", run_status_enum, nullable=False, server_default="running"),
        sa.Column("output_text", sa.Text, nullable=True),
        sa.Column("output_preview", sa.Text, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("is_preview", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("runner_id", sa.String(64), nullable=True),
        sa.Column("delivered_at", sa.DateTime, nullable=True),
        sa.Column("delivery_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("delivery_last_error", sa.Text, nullable=True),
        sa.Column("llm_model", sa.String(100), nullable=True),
        sa.Column("llm_usage", sa.JSON, nullable=True),
        sa.Column("llm_tool_calls", sa.JSON, nullable=True),
        sa.Column("used_web_search", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("citations", sa.JSON, nullable=True),
        sa.UniqueConstraint("job_id", "scheduled_for", name="uq_run_histories_job_scheduled_for"),
    )

    # Delivery attempts table
    op.create_table(
        "delivery_attempts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "run_history_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("run_histories.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("attempt", sa.Integer, nullable=False),
        sa.Column("status", attempt_status_enum, nullable=False),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("delivery_attempts")
    op.drop_table("run_histories")
    op.drop_constraint("fk_jobs_published_prompt_version_id", "jobs", type_="foreignkey")
    op.drop_table("prompt_versions")
    op.drop_index("ix_jobs_enabled_next_run_at", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("users")

    op.execute("DROP TYPE IF EXISTS deliveryattemptstatus")
    op.execute("DROP TYPE IF EXISTS runstatus")
    op.execute("DROP TYPE IF EXISTS channeltype")
