"""Run records and per-attempt delivery receipts."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promptloop.models.base import Base


class RunStatus(str, enum.Enum):
    """Lifecycle of a run record: created running, finalized once."""

    RUNNING = "running"
    SUCCESS = "success"
    FAIL = "fail"


class DeliveryAttemptStatus(str, enum.Enum):
    SUCCESS = "success"
    FAIL = "fail"


class RunHistory(Base):
    """One execution of a job.

    The (job_id, scheduled_for) pair is unique so that two runners racing on
    the same scheduled instant cannot both record a run. Preview runs carry
    no scheduled_for and are not constrained.
    """

    __tablename__ = "run_histories"
    __table_args__ = (
        UniqueConstraint("job_id", "scheduled_for", name="uq_run_histories_job_scheduled_for"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), index=True
    )
    prompt_version_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("prompt_versions.id", ondelete="SET NULL"), default=None
    )
    scheduled_for: Mapped[datetime | None] = mapped_column(default=None)
    run_at: Mapped[datetime] = mapped_column(default=func.now(), index=True)
    finished_at: Mapped[datetime | None] = mapped_column(default=None)

    status: Mapped[RunStatus] = mapped_column(
        Enum(
            RunStatus,
            values_callable=lambda e: [x.value for x in e],
            name="runstatus",
            create_type=False,
        ),
        default=RunStatus.RUNNING,
    )
    output_text: Mapped[str | None] = mapped_column(Text, default=None)
    output_preview: Mapped[str | None] = mapped_column(Text, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    is_preview: Mapped[bool] = mapped_column(Boolean, default=False)
    runner_id: Mapped[str | None] = mapped_column(String(64), default=None)

    # Delivery outcome
    delivered_at: Mapped[datetime | None] = mapped_column(default=None)
    delivery_attempts: Mapped[int] = mapped_column(Integer, default=0)
    delivery_last_error: Mapped[str | None] = mapped_column(Text, default=None)

    # Generation metadata
    llm_model: Mapped[str | None] = mapped_column(String(100), default=None)
    llm_usage: Mapped[dict | None] = mapped_column(JSON, default=None)
    llm_tool_calls: Mapped[dict | None] = mapped_column(JSON, default=None)
    used_web_search: Mapped[bool] = mapped_column(Boolean, default=False)
    citations: Mapped[list | None] = mapped_column(JSON, default=None)

    # Relationships
    attempts: Mapped[list[DeliveryAttempt]] = relationship(
        back_populates="run", lazy="selectin", order_by="DeliveryAttempt.attempt"
    )

    def __repr__(self) -> str:
        return f"<RunHistory job={self.job_id} status={self.status.value}>"


class DeliveryAttempt(Base):
    """Receipt for a single delivery attempt of a run."""

    __tablename__ = "delivery_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    run_history_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("run_histories.id", ondelete="CASCADE"), index=True
    )
    attempt: Mapped[int] = mapped_column(Integer)
    status: Mapped[DeliveryAttemptStatus] = mapped_column(
        Enum(
            DeliveryAttemptStatus,
            values_callable=lambda e: [x.value for x in e],
            name="deliveryattemptstatus",
            create_type=False,
        )
    )
    status_code: Mapped[int | None] = mapped_column(Integer, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(default=func.now())

    # Relationships
    run: Mapped[RunHistory] = relationship(back_populates="attempts", lazy="raise")

    def __repr__(self) -> str:
        return f"<DeliveryAttempt run={self.run_history_id} #{self.attempt} {self.status.value}>"
