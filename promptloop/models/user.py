from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promptloop.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from promptloop.models.job import Job


class User(Base, TimestampMixin):
    """Owner of scheduled jobs."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    # Per-owner override of quota.daily_run_limit; None uses the configured default
    daily_run_limit: Mapped[int | None] = mapped_column(Integer, default=None)

    # Relationships
    jobs: Mapped[list[Job]] = relationship(back_populates="owner", lazy="raise")

    def __repr__(self) -> str:
        return f"<User {self.email}>"
