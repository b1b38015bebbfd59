"""
ORM models for learners and their metadata.

Contract:
    ``LearnerModel`` is the population swept by the learner calculation job.
    ``LearnerMetaModel`` is a string key/value side table (one row per
    learner and key) holding the calculation version stamp, failure markers
    and course-job progress markers.

Invariants enforced:
    - One meta row per (learner_id, meta_key).
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from enrolment_kernel.db.base import Base, TimestampedBase, UUIDString
from enrolment_kernel.domain.dtos import Learner

# Learner meta keys
LEARNER_CALCULATION_META_NAME = "enrolment_learner_calculated_version"
LEARNER_CALCULATION_FAILED_META_NAME = "enrolment_learner_calculation_failed"
COURSE_CALCULATION_META_PREFIX = "enrolment_course_calculation_"


class LearnerModel(TimestampedBase):
    """A learner (site user) whose enrolments are calculated."""

    __tablename__ = "learners"

    login: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    def to_dto(self) -> Learner:
        return Learner(
            learner_id=self.id,
            login=self.login,
            description=self.description or "",
        )


class LearnerMetaModel(Base):
    """Per-learner metadata value."""

    __tablename__ = "learner_meta"

    __table_args__ = (
        UniqueConstraint("learner_id", "meta_key", name="uq_learner_meta_key"),
        Index("ix_learner_meta_key_value", "meta_key", "meta_value"),
    )

    learner_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("learners.id", ondelete="CASCADE"),
        nullable=False,
    )
    meta_key: Mapped[str] = mapped_column(String(191), nullable=False)
    meta_value: Mapped[str] = mapped_column(String(191), nullable=False)
