"""
EnrolmentManager -- recalculates and caches learner enrolment results.

Responsibility:
    The per-entity recalculation collaborator of the batch engine.  Given a
    learner (and optionally a course) it asks every registered access
    provider for a decision, persists the outcome in ``enrolment_results``
    stamped with the current calculation version, and stamps the learner
    with that version once all courses are done.

Calculation version:
    md5 over the site salt and the sorted ``provider_id:version`` pairs.
    It changes when a provider is added, removed or bumped, or when the
    site salt is reset, and the batch engine compares it against the
    version gate to decide whether a learner sweep is needed.

Failure modes:
    - LearnerNotFoundError / CourseNotFoundError for unknown ids.
    - Exceptions raised by providers propagate; the calling job decides
      whether to continue the batch.
"""

from __future__ import annotations

import hashlib
from typing import Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.domain.dtos import Learner
from enrolment_kernel.exceptions import CourseNotFoundError, LearnerNotFoundError
from enrolment_kernel.logging_config import get_logger
from enrolment_kernel.models.course import CourseModel, EnrolmentResultModel
from enrolment_kernel.models.learner import (
    LEARNER_CALCULATION_FAILED_META_NAME,
    LEARNER_CALCULATION_META_NAME,
)
from enrolment_kernel.selectors.learner_selector import LearnerSelector
from enrolment_kernel.services.access_providers import AccessProvider
from enrolment_kernel.services.learner_meta_store import LearnerMetaStore
from enrolment_kernel.services.option_store import OptionStore
from enrolment_kernel.services.provider_state_store import ProviderStateStore

logger = get_logger("kernel.enrolment_manager")

SITE_SALT_OPTION_NAME = "enrolment-site-salt"


class EnrolmentManager:
    """Provider-driven enrolment calculation for learners and courses.

    Contract:
        - ``recalculate_enrolments()`` refreshes every course for a learner
          and stamps the learner with the current calculation version.
        - ``recalculate_course_enrolment()`` refreshes a single pair.
        - ``invalidate_course_results()`` marks a course's cached results
          stale without recalculating them.

    Non-goals:
        - Does NOT commit -- the caller owns the transaction.
        - Does NOT schedule background work; see enrolment_batch.
    """

    def __init__(
        self,
        session: Session,
        providers: Sequence[AccessProvider] = (),
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._providers: dict[str, AccessProvider] = {}
        for provider in providers:
            if provider.provider_id in self._providers:
                raise ValueError(
                    f"Access provider '{provider.provider_id}' is already registered"
                )
            self._providers[provider.provider_id] = provider

        self._options = OptionStore(session)
        self._meta = LearnerMetaStore(session)
        self._selector = LearnerSelector(session)

    @property
    def providers(self) -> tuple[AccessProvider, ...]:
        return tuple(self._providers.values())

    @property
    def clock(self) -> Clock:
        return self._clock

    # -------------------------------------------------------------------------
    # Calculation version
    # -------------------------------------------------------------------------

    def get_site_salt(self) -> str:
        salt = self._options.get(SITE_SALT_OPTION_NAME)
        if salt is None:
            salt = self.reset_site_salt()
        return salt

    def reset_site_salt(self) -> str:
        """Generate a new salt, invalidating every stamped learner."""
        salt = uuid4().hex
        self._options.set(SITE_SALT_OPTION_NAME, salt)
        logger.info("site_salt_reset")
        return salt

    def get_enrolment_calculation_version(self) -> str:
        parts = [self.get_site_salt()]
        parts.extend(
            f"{provider_id}:{self._providers[provider_id].version}"
            for provider_id in sorted(self._providers)
        )
        return hashlib.md5("-".join(parts).encode("utf-8")).hexdigest()

    # -------------------------------------------------------------------------
    # Recalculation
    # -------------------------------------------------------------------------

    def recalculate_enrolments(self, learner_id: UUID) -> None:
        """Recalculate every course for one learner and stamp the version.

        Raises:
            LearnerNotFoundError: If the learner does not exist.
        """
        learner = self._require_learner(learner_id)
        version = self.get_enrolment_calculation_version()

        enrolled = 0
        for course_id in self._selector.course_ids():
            if self._calculate(learner, course_id, version):
                enrolled += 1

        self._meta.set(learner_id, LEARNER_CALCULATION_META_NAME, version)
        self._meta.delete(learner_id, LEARNER_CALCULATION_FAILED_META_NAME)

        logger.debug(
            "learner_enrolments_recalculated",
            extra={
                "learner_id": str(learner_id),
                "enrolled_courses": enrolled,
                "calculation_version": version,
            },
        )

    def recalculate_course_enrolment(self, learner_id: UUID, course_id: UUID) -> bool:
        """Recalculate one learner/course pair and return the outcome.

        Raises:
            LearnerNotFoundError: If the learner does not exist.
            CourseNotFoundError: If the course does not exist.
        """
        learner = self._require_learner(learner_id)
        if self._session.get(CourseModel, course_id) is None:
            raise CourseNotFoundError(str(course_id))

        return self._calculate(
            learner, course_id, self.get_enrolment_calculation_version(),
        )

    def mark_recalculation_failed(self, learner_id: UUID, version: str) -> None:
        """Record that recalculating ``learner_id`` failed at ``version``."""
        self._meta.set(learner_id, LEARNER_CALCULATION_FAILED_META_NAME, version)

    def invalidate_course_results(self, course_id: UUID) -> int:
        """Invalidate all cached results of a course; returns rows touched."""
        result = self._session.execute(
            update(EnrolmentResultModel)
            .where(EnrolmentResultModel.course_id == course_id)
            .values(calculation_version=None)
        )
        count = result.rowcount or 0
        logger.info(
            "course_results_invalidated",
            extra={"course_id": str(course_id), "invalidated": count},
        )
        return count

    def is_enrolled(
        self,
        learner_id: UUID,
        course_id: UUID,
        check_cache: bool = True,
    ) -> bool:
        """Enrolment outcome, served from cache when calculated at the current version."""
        if check_cache:
            cached = self._selector.get_result(learner_id, course_id)
            if (
                cached is not None
                and cached.calculation_version == self.get_enrolment_calculation_version()
            ):
                return cached.is_enrolled
        return self.recalculate_course_enrolment(learner_id, course_id)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _require_learner(self, learner_id: UUID) -> Learner:
        learner = self._selector.get_learner(learner_id)
        if learner is None:
            raise LearnerNotFoundError(str(learner_id))
        return learner

    def _calculate(self, learner: Learner, course_id: UUID, version: str) -> bool:
        store = ProviderStateStore.get(
            self._session, learner.learner_id, course_id, self._clock,
        )

        # Every handling provider is consulted so each can update its state.
        is_enrolled = False
        for provider in self._providers.values():
            if not provider.handles_access(course_id):
                continue
            state = store.get_provider_state(provider.provider_id)
            if provider.has_access(learner, course_id, state):
                is_enrolled = True

        store.save()
        self._store_result(learner.learner_id, course_id, is_enrolled, version)
        return is_enrolled

    def _store_result(
        self,
        learner_id: UUID,
        course_id: UUID,
        is_enrolled: bool,
        version: str,
    ) -> None:
        model = self._session.execute(
            select(EnrolmentResultModel).where(
                EnrolmentResultModel.learner_id == learner_id,
                EnrolmentResultModel.course_id == course_id,
            )
        ).scalar_one_or_none()

        if model is None:
            self._session.add(
                EnrolmentResultModel(
                    learner_id=learner_id,
                    course_id=course_id,
                    is_enrolled=is_enrolled,
                    calculation_version=version,
                )
            )
        else:
            model.is_enrolled = is_enrolled
            model.calculation_version = version
        self._session.flush()
