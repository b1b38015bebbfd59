"""
ORM model for persisted provider state records.

Contract:
    One row per (learner_id, course_id, provider_id).  ``payload`` holds the
    compact JSON form produced by ``ProviderState.to_json()``.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from enrolment_kernel.db.base import TimestampedBase, UUIDString


class ProviderStateModel(TimestampedBase):
    __tablename__ = "provider_states"

    __table_args__ = (
        UniqueConstraint(
            "learner_id", "course_id", "provider_id",
            name="uq_provider_state_key",
        ),
    )

    learner_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("learners.id", ondelete="CASCADE"),
        nullable=False,
    )
    course_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("courses.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
