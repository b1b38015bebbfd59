"""
EnrolmentBatchOrchestrator -- DI container for the enrolment batch engine.

Contract:
    Wires the enrolment manager, the deferred task queue and the job
    scheduler on a session, and builds a ``DeferredTaskRunner`` with a
    handler for each background job name.  Also exposes the host lifecycle
    hooks: site initialisation, course rule changes and deactivation.

Architecture: enrolment_batch (top-level).  The canonical entry point for
    configuring and running the calculation jobs.

Invariants enforced:
    - Clock injection (all services receive the same Clock).
    - No kernel imports of enrolment_batch (orchestrator lives here).
"""

from __future__ import annotations

from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from enrolment_batch.domain.types import BackgroundJobName, JobRunResult
from enrolment_batch.jobs.course_calculation import CourseCalculationJob
from enrolment_batch.jobs.learner_calculation import LearnerCalculationJob
from enrolment_batch.services.deferred_queue import SqlDeferredTaskQueue
from enrolment_batch.services.job_scheduler import EnrolmentJobScheduler
from enrolment_batch.services.task_runner import DeferredTaskRunner
from enrolment_config import get_settings
from enrolment_config.schema import EnrolmentBatchSettings
from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.logging_config import get_logger
from enrolment_kernel.services.access_providers import (
    AccessProvider,
    ManualEnrolmentProvider,
)
from enrolment_kernel.services.enrolment_manager import EnrolmentManager

logger = get_logger("batch.orchestrator")


def _default_providers() -> tuple[AccessProvider, ...]:
    return (ManualEnrolmentProvider(),)


class EnrolmentBatchOrchestrator:
    """DI container for the enrolment batch engine.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``create_job_scheduler()`` returns a scheduler on a session.
        - ``create_task_runner()`` returns a runner with both job handlers.

    Non-goals:
        - Does NOT start the runner automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        providers: Sequence[AccessProvider] = (),
        clock: Clock | None = None,
        settings: EnrolmentBatchSettings | None = None,
    ) -> None:
        self._session = session
        self._providers = tuple(providers)
        self._clock = clock or SystemClock()
        self._settings = settings or EnrolmentBatchSettings()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        providers: Sequence[AccessProvider] | None = None,
        clock: Clock | None = None,
        settings: EnrolmentBatchSettings | None = None,
    ) -> EnrolmentBatchOrchestrator:
        """Create a fully wired orchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            providers: Access providers.  If None, only manual enrolment.
            clock: Optional clock for deterministic testing.
            settings: Optional settings.  If None, ``get_settings()``.
        """
        return cls(
            session=session,
            providers=providers if providers is not None else _default_providers(),
            clock=clock or SystemClock(),
            settings=settings if settings is not None else get_settings(),
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    def create_enrolment_manager(self, session: Session | None = None) -> EnrolmentManager:
        return EnrolmentManager(
            session or self._session, self._providers, self._clock,
        )

    def create_task_queue(self, session: Session | None = None) -> SqlDeferredTaskQueue:
        return SqlDeferredTaskQueue(session or self._session, self._clock)

    def create_job_scheduler(self, session: Session | None = None) -> EnrolmentJobScheduler:
        """Create a scheduler wired with the orchestrator's dependencies.

        Args:
            session: Optional session override. If None, uses the
                orchestrator's session.
        """
        target_session = session or self._session
        return EnrolmentJobScheduler(
            session=target_session,
            enrolment_manager=self.create_enrolment_manager(target_session),
            task_queue=self.create_task_queue(target_session),
            clock=self._clock,
            settings=self._settings,
        )

    def create_task_runner(
        self,
        session_factory: Callable[[], Session],
    ) -> DeferredTaskRunner:
        """Create a runner that executes both calculation jobs.

        Args:
            session_factory: Callable returning a new session for each tick.
        """

        def run_learner_calculation(session: Session, args: dict[str, Any]) -> JobRunResult:
            return self.create_job_scheduler(session).run_learner_calculation(args)

        def run_course_calculation(session: Session, args: dict[str, Any]) -> JobRunResult:
            return self.create_job_scheduler(session).run_course_calculation(args)

        runner = DeferredTaskRunner(
            session_factory=session_factory,
            clock=self._clock,
            tick_interval_seconds=self._settings.tick_interval_seconds,
            max_attempts=self._settings.max_task_attempts,
            batch_limit=self._settings.runner_batch_limit,
        )
        runner.register(BackgroundJobName.LEARNER_CALCULATION.value, run_learner_calculation)
        runner.register(BackgroundJobName.COURSE_CALCULATION.value, run_course_calculation)
        return runner

    # -------------------------------------------------------------------------
    # Host lifecycle hooks
    # -------------------------------------------------------------------------

    def on_site_init(self) -> LearnerCalculationJob | None:
        """Start a learner sweep if the calculation version moved."""
        return self.create_job_scheduler().maybe_start_learner_calculation()

    def on_course_rules_changed(self, course_id: UUID) -> CourseCalculationJob:
        """Invalidate a course's results and sweep the invalidated learners."""
        self.create_enrolment_manager().invalidate_course_results(course_id)
        return self.create_job_scheduler().start_course_calculation_job(
            course_id, invalidated_only=True,
        )

    def deactivate(self) -> int:
        """Cancel every pending calculation task; returns the count."""
        names = self.create_job_scheduler().get_background_jobs()
        cancelled = self.create_task_queue().cancel_all(names)
        logger.info("enrolment_batch_deactivated", extra={"cancelled": cancelled})
        return cancelled

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> EnrolmentBatchSettings:
        return self._settings

    @property
    def providers(self) -> tuple[AccessProvider, ...]:
        return self._providers
