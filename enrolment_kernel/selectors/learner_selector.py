"""
Module: enrolment_kernel.selectors.learner_selector
Responsibility: Bounded batch queries over the learner population.
Architecture position: Kernel > Selectors.  Read-only.

These are the entity-store queries the calculation jobs page through.  Each
query is limited to ``limit`` rows and ordered by id; the jobs rely on every
processed learner dropping out of the predicate (version stamp, failure
marker or progress marker) rather than on an offset cursor.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from enrolment_kernel.domain.dtos import EnrolmentResult, Learner
from enrolment_kernel.models.course import CourseModel, EnrolmentResultModel
from enrolment_kernel.models.learner import (
    LEARNER_CALCULATION_FAILED_META_NAME,
    LEARNER_CALCULATION_META_NAME,
    LearnerMetaModel,
    LearnerModel,
)
from enrolment_kernel.selectors.base import BaseSelector


class LearnerSelector(BaseSelector[LearnerModel]):
    """Read-only learner / enrolment result queries."""

    def stale_learner_ids(self, version: str, limit: int) -> tuple[UUID, ...]:
        """Learners whose enrolments were not calculated at ``version``.

        Matches learners with no version stamp or a stamp for another
        version, excluding learners whose recalculation already failed at
        this version.
        """
        stmt = (
            select(LearnerModel.id)
            .where(*self._stale_conditions(version))
            .order_by(LearnerModel.id)
            .limit(limit)
        )
        return tuple(self.session.execute(stmt).scalars().all())

    def count_stale_learners(self, version: str) -> int:
        """Number of learners ``stale_learner_ids`` would still select."""
        stmt = select(func.count(LearnerModel.id)).where(
            *self._stale_conditions(version),
        )
        return self.session.execute(stmt).scalar_one()

    def course_learner_ids(
        self,
        course_id: UUID,
        progress_key: str,
        invalidated_only: bool,
        limit: int,
    ) -> tuple[UUID, ...]:
        """Learners of a course not yet visited by the job owning ``progress_key``.

        With ``invalidated_only`` only learners holding an invalidated
        result for the course are returned; otherwise every learner is a
        candidate.
        """
        visited = select(LearnerMetaModel.learner_id).where(
            LearnerMetaModel.meta_key == progress_key,
        )

        if invalidated_only:
            stmt = (
                select(EnrolmentResultModel.learner_id)
                .where(
                    EnrolmentResultModel.course_id == course_id,
                    EnrolmentResultModel.calculation_version.is_(None),
                    EnrolmentResultModel.learner_id.not_in(visited),
                )
                .order_by(EnrolmentResultModel.learner_id)
                .limit(limit)
            )
        else:
            stmt = (
                select(LearnerModel.id)
                .where(LearnerModel.id.not_in(visited))
                .order_by(LearnerModel.id)
                .limit(limit)
            )

        return tuple(self.session.execute(stmt).scalars().all())

    def course_ids(self) -> tuple[UUID, ...]:
        stmt = select(CourseModel.id).order_by(CourseModel.id)
        return tuple(self.session.execute(stmt).scalars().all())

    def get_learner(self, learner_id: UUID) -> Learner | None:
        model = self.session.get(LearnerModel, learner_id)
        return model.to_dto() if model is not None else None

    def get_result(self, learner_id: UUID, course_id: UUID) -> EnrolmentResult | None:
        model = self.session.execute(
            select(EnrolmentResultModel).where(
                EnrolmentResultModel.learner_id == learner_id,
                EnrolmentResultModel.course_id == course_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_meta(self, learner_id: UUID, meta_key: str) -> str | None:
        return self.session.execute(
            select(LearnerMetaModel.meta_value).where(
                LearnerMetaModel.learner_id == learner_id,
                LearnerMetaModel.meta_key == meta_key,
            )
        ).scalar_one_or_none()

    def _stale_conditions(self, version: str) -> tuple:
        return (
            LearnerModel.id.not_in(
                self._learners_with_meta(LEARNER_CALCULATION_META_NAME, version)
            ),
            LearnerModel.id.not_in(
                self._learners_with_meta(LEARNER_CALCULATION_FAILED_META_NAME, version)
            ),
        )

    def _learners_with_meta(self, meta_key: str, meta_value: str):
        return select(LearnerMetaModel.learner_id).where(
            LearnerMetaModel.meta_key == meta_key,
            LearnerMetaModel.meta_value == meta_value,
        )
