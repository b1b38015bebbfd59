"""
ORM models for the deferred task queue and job leases.

Contract:
    ``DeferredTaskModel`` persists one queued invocation of a named job with
    its flat args mapping.  ``JobLeaseModel`` holds the single-flight lease
    per job name.

Architecture: enrolment_batch/models.  Imports from enrolment_kernel.db.base
    only.

Invariants enforced:
    - ``args_key`` is the canonical JSON of ``args``; pending duplicates are
      detected on (name, args_key).
    - One lease row per job name.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from enrolment_kernel.db.base import TimestampedBase

if TYPE_CHECKING:
    from enrolment_batch.domain.types import DeferredTask


class DeferredTaskModel(TimestampedBase):
    """A queued background job invocation."""

    __tablename__ = "deferred_tasks"

    __table_args__ = (
        Index("ix_deferred_tasks_status_run_after", "status", "run_after"),
        Index("ix_deferred_tasks_name_status", "name", "status"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    args: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    args_key: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    run_after: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> DeferredTask:
        from enrolment_batch.domain.types import DeferredTask, DeferredTaskStatus

        return DeferredTask(
            task_id=self.id,
            name=self.name,
            status=DeferredTaskStatus(self.status),
            args=dict(self.args or {}),
            run_after=self.run_after,
            attempts=self.attempts,
            last_error=self.last_error,
            created_at=self.created_at,
        )


class JobLeaseModel(TimestampedBase):
    """Single-flight lease for a job name.

    A lease with no holder, or one whose ``expires_at`` has passed, is free.
    """

    __tablename__ = "job_leases"

    job_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    holder: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
