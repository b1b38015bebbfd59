"""
LearnerCalculationJob -- sweeps learners whose enrolments are stale.

Each invocation recalculates up to ``batch_size`` learners that carry no
version stamp for the current enrolment calculation version.  Recalculating
a learner stamps it, so the next invocation's selection naturally moves on.
A learner whose recalculation raises is stamped with a failure marker for
the same version and is skipped until the version changes or a later
recalculation succeeds.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from enrolment_batch.domain.types import (
    LEARNER_CALCULATION_BATCH_SIZE,
    BackgroundJobName,
    LearnerCalculationArgs,
)
from enrolment_batch.jobs.base import BatchedEntityJob
from enrolment_kernel.selectors.learner_selector import LearnerSelector
from enrolment_kernel.services.enrolment_manager import EnrolmentManager


class LearnerCalculationJob(BatchedEntityJob):

    NAME = BackgroundJobName.LEARNER_CALCULATION.value

    def __init__(
        self,
        session: Session,
        enrolment_manager: EnrolmentManager,
        batch_size: int = LEARNER_CALCULATION_BATCH_SIZE,
    ):
        super().__init__(session, enrolment_manager)
        self._args = LearnerCalculationArgs(batch_size=batch_size)
        self._selector = LearnerSelector(session)
        self._version: str | None = None

    @classmethod
    def from_args(
        cls,
        session: Session,
        enrolment_manager: EnrolmentManager,
        args: Mapping[str, Any],
    ) -> LearnerCalculationJob:
        parsed = LearnerCalculationArgs.from_args(args)
        return cls(session, enrolment_manager, batch_size=parsed.batch_size)

    @property
    def name(self) -> str:
        return self.NAME

    @property
    def batch_size(self) -> int:
        return self._args.batch_size

    def get_args(self) -> dict[str, Any]:
        return self._args.to_args()

    def _select_batch(self) -> tuple[UUID, ...]:
        self._version = self._manager.get_enrolment_calculation_version()
        return self._selector.stale_learner_ids(self._version, self._args.batch_size)

    def _process(self, learner_id: UUID) -> None:
        self._manager.recalculate_enrolments(learner_id)

    def _on_failure(self, learner_id: UUID, exc: Exception) -> None:
        self._manager.mark_recalculation_failed(learner_id, self._version)
