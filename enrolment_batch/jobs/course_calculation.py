"""
CourseCalculationJob -- recalculates every learner's enrolment in one course.

Progress across invocations is tracked with a learner meta marker named
after the job id (``enrolment_course_calculation_<job_id>``).  A learner is
stamped once visited, whether its recalculation succeeded or failed, so the
selection shrinks on every invocation.  When nothing is left the markers
are removed from all learners.

With ``invalidated_only`` the job only visits learners whose cached result
for the course was invalidated.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from enrolment_batch.domain.types import BackgroundJobName, CourseCalculationArgs
from enrolment_batch.jobs.base import BatchedEntityJob
from enrolment_kernel.logging_config import get_logger
from enrolment_kernel.models.learner import COURSE_CALCULATION_META_PREFIX
from enrolment_kernel.selectors.learner_selector import LearnerSelector
from enrolment_kernel.services.enrolment_manager import EnrolmentManager
from enrolment_kernel.services.learner_meta_store import LearnerMetaStore

logger = get_logger("batch.jobs.course_calculation")

PROGRESS_MARKER_VALUE = "1"


class CourseCalculationJob(BatchedEntityJob):

    NAME = BackgroundJobName.COURSE_CALCULATION.value

    def __init__(
        self,
        session: Session,
        enrolment_manager: EnrolmentManager,
        args: CourseCalculationArgs | Mapping[str, Any],
    ):
        super().__init__(session, enrolment_manager)
        if not isinstance(args, CourseCalculationArgs):
            args = CourseCalculationArgs.from_args(args)
        self._args = args
        self._selector = LearnerSelector(session)
        self._meta = LearnerMetaStore(session)

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def job_id(self) -> str:
        return self._args.job_id

    @property
    def course_id(self) -> UUID:
        return self._args.course_id

    @property
    def invalidated_only(self) -> bool:
        return self._args.invalidated_only

    @property
    def batch_size(self) -> int:
        return self._args.batch_size

    @property
    def progress_key(self) -> str:
        return f"{COURSE_CALCULATION_META_PREFIX}{self._args.job_id}"

    def get_args(self) -> dict[str, Any]:
        return self._args.to_args()

    def _select_batch(self) -> tuple[UUID, ...]:
        return self._selector.course_learner_ids(
            self._args.course_id,
            self.progress_key,
            self._args.invalidated_only,
            self._args.batch_size,
        )

    def _process(self, learner_id: UUID) -> None:
        self._manager.recalculate_course_enrolment(learner_id, self._args.course_id)
        self._meta.set(learner_id, self.progress_key, PROGRESS_MARKER_VALUE)

    def _on_failure(self, learner_id: UUID, exc: Exception) -> None:
        self._meta.set(learner_id, self.progress_key, PROGRESS_MARKER_VALUE)

    def _on_complete(self) -> None:
        removed = self._meta.delete_for_all_learners(self.progress_key)
        logger.info(
            "course_progress_markers_removed",
            extra={
                "course_id": str(self._args.course_id),
                "job_id": self._args.job_id,
                "removed": removed,
            },
        )
