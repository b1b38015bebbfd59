"""
EnrolmentJobScheduler -- starts, runs and resubmits the calculation jobs.

Contract:
    - ``start_course_calculation_job()`` submits a course sweep.
    - ``maybe_start_learner_calculation()`` submits a learner sweep when the
      enrolment calculation version differs from the version gate.
    - ``run()`` executes exactly one batch of a job.  An incomplete job is
      resubmitted with its current args; a complete one fires its completion
      callback.
    - ``get_background_jobs()`` extends a list of job names with ours, so a
      host can cancel them on deactivation.

Architecture: enrolment_batch/services.  Collaborators are injected: the
    enrolment manager, the deferred task queue, the version gate and the
    lease manager.

Invariants enforced:
    - One batch per invocation.
    - The version gate advances only when a learner sweep completes, and
      only to the version the sweep ran against.
    - At most one concurrent run per job name; a run that finds the lease
      held is skipped and not resubmitted.
    - Never commits the caller's session.  Only the lease manager commits,
      in its own transactions on a separate session.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from enrolment_batch.domain.types import (
    BackgroundJobName,
    CourseCalculationArgs,
    JobRunResult,
    JobRunStatus,
)
from enrolment_batch.jobs.base import BackgroundJob
from enrolment_batch.jobs.course_calculation import CourseCalculationJob
from enrolment_batch.jobs.learner_calculation import LearnerCalculationJob
from enrolment_batch.services.deferred_queue import DeferredTaskQueue
from enrolment_batch.services.lease import JobLeaseManager
from enrolment_batch.services.version_gate import VersionGate
from enrolment_config.schema import EnrolmentBatchSettings
from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.exceptions import JobAlreadyRunningError
from enrolment_kernel.logging_config import LogContext, get_logger
from enrolment_kernel.services.enrolment_manager import EnrolmentManager

logger = get_logger("batch.job_scheduler")

BACKGROUND_JOB_NAMES: tuple[str, ...] = tuple(name.value for name in BackgroundJobName)


class EnrolmentJobScheduler:
    """Batched enrolment recalculation scheduler.

    Non-goals:
        - Does NOT execute deferred tasks -- ``DeferredTaskRunner`` does.
        - Does NOT call ``session.commit()``.
    """

    def __init__(
        self,
        session: Session,
        enrolment_manager: EnrolmentManager,
        task_queue: DeferredTaskQueue,
        clock: Clock | None = None,
        settings: EnrolmentBatchSettings | None = None,
        version_gate: VersionGate | None = None,
        lease_manager: JobLeaseManager | None = None,
    ):
        self._session = session
        self._manager = enrolment_manager
        self._queue = task_queue
        self._clock = clock or SystemClock()
        self._settings = settings or EnrolmentBatchSettings()
        self._gate = version_gate or VersionGate.for_session(session)
        self._leases = lease_manager or JobLeaseManager(
            sessionmaker(bind=session.get_bind()),
            self._clock,
            self._settings.lease_ttl_seconds,
        )

    @property
    def version_gate(self) -> VersionGate:
        return self._gate

    # -------------------------------------------------------------------------
    # Starting jobs
    # -------------------------------------------------------------------------

    def start_course_calculation_job(
        self,
        course_id: UUID,
        invalidated_only: bool,
        batch_size: int | None = None,
    ) -> CourseCalculationJob:
        """Submit a sweep of ``course_id`` and return the (unrun) job."""
        args = CourseCalculationArgs.from_args(
            {
                "course_id": course_id,
                "invalidated_only": invalidated_only,
                "batch_size": batch_size,
            }
        )
        job = CourseCalculationJob(self._session, self._manager, args)
        self._submit(job)
        return job

    def maybe_start_learner_calculation(self) -> LearnerCalculationJob | None:
        """Submit a learner sweep if the calculation version moved."""
        version = self._manager.get_enrolment_calculation_version()
        if self._gate.is_current(version):
            logger.debug(
                "learner_calculation_not_needed",
                extra={"calculation_version": version},
            )
            return None

        job = self._new_learner_job()
        self._submit(job)
        return job

    # -------------------------------------------------------------------------
    # Deferred task entry points
    # -------------------------------------------------------------------------

    def run_learner_calculation(
        self,
        args: Mapping[str, Any] | None = None,
    ) -> JobRunResult:
        """Run one batch of the learner sweep."""
        if args:
            job = LearnerCalculationJob.from_args(self._session, self._manager, args)
        else:
            job = self._new_learner_job()
        target_version = self._manager.get_enrolment_calculation_version()

        def advance_gate() -> None:
            current = self._manager.get_enrolment_calculation_version()
            if current != target_version:
                # A newer sweep will be started for the new version
                logger.warning(
                    "calculation_version_changed_during_sweep",
                    extra={
                        "swept_version": target_version,
                        "calculation_version": current,
                    },
                )
                return
            self._gate.advance(target_version)

        return self.run(job, advance_gate)

    def run_course_calculation(
        self,
        args: CourseCalculationArgs | Mapping[str, Any],
    ) -> JobRunResult:
        """Run one batch of a course sweep."""
        job = CourseCalculationJob(self._session, self._manager, args)
        with LogContext.bind(course_id=str(job.course_id), job_id=job.job_id):
            return self.run(job)

    # -------------------------------------------------------------------------
    # Generic run
    # -------------------------------------------------------------------------

    def get_background_jobs(self, jobs: Iterable[str] = ()) -> list[str]:
        """``jobs`` extended with the names this scheduler submits."""
        result = list(jobs)
        for name in BACKGROUND_JOB_NAMES:
            if name not in result:
                result.append(name)
        return result

    def run(
        self,
        job: BackgroundJob,
        completion_callback: Callable[[], Any] | None = None,
    ) -> JobRunResult:
        """Run one batch of ``job`` and resubmit it or complete it."""
        holder = uuid4().hex

        with LogContext.bind(job_name=job.name):
            try:
                self._leases.acquire(job.name, holder)
            except JobAlreadyRunningError as exc:
                logger.warning("job_run_skipped", extra={"lease_holder": exc.holder})
                return JobRunResult(
                    job_name=job.name,
                    status=JobRunStatus.SKIPPED,
                    args=job.get_args(),
                )

            try:
                job.run()

                if job.is_complete():
                    if completion_callback is not None:
                        completion_callback()
                    status = JobRunStatus.COMPLETED
                else:
                    self._submit(job, self._settings.reschedule_delay_seconds)
                    status = JobRunStatus.RESCHEDULED
            finally:
                self._leases.release(job.name, holder)

            outcome = getattr(job, "last_batch", None)
            result = JobRunResult(
                job_name=job.name,
                status=status,
                processed=len(outcome.processed) if outcome is not None else 0,
                failed=len(outcome.failed) if outcome is not None else 0,
                args=job.get_args(),
            )

            logger.info(
                "job_run_finished",
                extra={
                    "status": status.value,
                    "processed": result.processed,
                    "failed": result.failed,
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _new_learner_job(self) -> LearnerCalculationJob:
        return LearnerCalculationJob(
            self._session, self._manager, self._settings.learner_batch_size,
        )

    def _submit(self, job: BackgroundJob, delay_seconds: int = 0) -> None:
        task = self._queue.schedule(job.name, job.get_args(), delay_seconds)
        logger.info(
            "job_submitted",
            extra={
                "job": job.name,
                "task_id": str(task.task_id),
                "delay_seconds": delay_seconds,
            },
        )
