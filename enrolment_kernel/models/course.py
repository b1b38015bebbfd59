"""
ORM models for courses and cached enrolment results.

Contract:
    ``EnrolmentResultModel`` caches the outcome of one learner/course
    calculation together with the calculation version that produced it.
    A NULL ``calculation_version`` marks the result as invalidated.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from enrolment_kernel.db.base import TimestampedBase, UUIDString
from enrolment_kernel.domain.dtos import Course, EnrolmentResult


class CourseModel(TimestampedBase):
    __tablename__ = "courses"

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def to_dto(self) -> Course:
        return Course(
            course_id=self.id,
            title=self.title,
            is_published=self.is_published,
        )


class EnrolmentResultModel(TimestampedBase):
    """Cached enrolment outcome for one learner in one course."""

    __tablename__ = "enrolment_results"

    __table_args__ = (
        UniqueConstraint("learner_id", "course_id", name="uq_enrolment_result_pair"),
        Index("ix_enrolment_results_course_version", "course_id", "calculation_version"),
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
    is_enrolled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calculation_version: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def to_dto(self) -> EnrolmentResult:
        return EnrolmentResult(
            learner_id=self.learner_id,
            course_id=self.course_id,
            is_enrolled=self.is_enrolled,
            calculation_version=self.calculation_version,
        )
