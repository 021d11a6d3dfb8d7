"""Scheduled prompt jobs and their published prompt versions."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promptloop.models.base import Base, TimestampMixin, UpdatedAtMixin

if TYPE_CHECKING:
    from promptloop.models.user import User


class ChannelType(str, enum.Enum):
    """Where a job's output is delivered."""

    DISCORD = "discord"
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"
    IN_APP = "in_app"


class Job(Base, TimestampMixin, UpdatedAtMixin):
    """A prompt that runs on a schedule and delivers its output to a channel.

    `locked_at` doubles as the claim token: a runner that claims the job
    writes a fresh value and every later write is guarded by it.
    """

    __tablename__ = "jobs"
    __table_args__ = (Index("ix_jobs_enabled_next_run_at", "enabled", "next_run_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200))

    # Prompt
    prompt: Mapped[str] = mapped_column(Text)
    post_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    post_prompt_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Generation
    llm_model: Mapped[str | None] = mapped_column(String(100), default=None)
    use_web_search: Mapped[bool] = mapped_column(Boolean, default=False)
    web_search_mode: Mapped[str | None] = mapped_column(String(16), default=None)  # native, plugin

    # Schedule (UTC)
    schedule_type: Mapped[str] = mapped_column(String(16))  # daily, weekly, cron
    schedule_time: Mapped[str | None] = mapped_column(String(5), default=None)
    schedule_day_of_week: Mapped[int | None] = mapped_column(Integer, default=None)
    schedule_cron: Mapped[str | None] = mapped_column(String(120), default=None)

    # Delivery
    channel_type: Mapped[ChannelType] = mapped_column(
        Enum(
            ChannelType,
            values_callable=lambda e: [x.value for x in e],
            name="channeltype",
            create_type=False,
        )
    )
    channel_config: Mapped[dict] = mapped_column(JSON, default=dict)

    # Runner state
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    next_run_at: Mapped[datetime | None] = mapped_column(default=None)
    locked_at: Mapped[datetime | None] = mapped_column(default=None)
    fail_count: Mapped[int] = mapped_column(Integer, default=0)

    published_prompt_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey(
            "prompt_versions.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_jobs_published_prompt_version_id",
        ),
        default=None,
    )

    # Relationships
    owner: Mapped[User] = relationship(back_populates="jobs", lazy="raise")
    published_prompt_version: Mapped[PromptVersion | None] = relationship(
        foreign_keys=[published_prompt_version_id], lazy="selectin", viewonly=True
    )

    def __repr__(self) -> str:
        return f"<Job {self.name} next_run_at={self.next_run_at}>"


class PromptVersion(Base, TimestampMixin):
    """Immutable snapshot of a job's prompt that runs reference."""

    __tablename__ = "prompt_versions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), index=True
    )
    template: Mapped[str] = mapped_column(Text)
    post_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    post_prompt_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    variables: Mapped[dict] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<PromptVersion {self.id} job={self.job_id}>"
