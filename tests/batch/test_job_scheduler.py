"""
Tests for enrolment_batch.services.job_scheduler.

Validates job submission, the one-batch-per-invocation run loop with
resubmission, the version gate, single-flight leases and the background
job name list.
"""

from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy import select

from enrolment_batch.domain.types import BackgroundJobName, JobRunStatus
from enrolment_batch.models.tasks import JobLeaseModel
from enrolment_batch.services.deferred_queue import SqlDeferredTaskQueue
from enrolment_batch.services.job_scheduler import EnrolmentJobScheduler
from enrolment_batch.services.lease import JobLeaseManager
from enrolment_config.schema import EnrolmentBatchSettings
from enrolment_kernel.exceptions import JobAlreadyRunningError
from enrolment_kernel.services.access_providers import ManualEnrolmentProvider
from enrolment_kernel.services.enrolment_manager import EnrolmentManager

LEARNER_JOB = BackgroundJobName.LEARNER_CALCULATION.value
COURSE_JOB = BackgroundJobName.COURSE_CALCULATION.value


# =============================================================================
# Test doubles
# =============================================================================


class CountdownJob:
    """Completes after ``batches`` runs."""

    def __init__(self, batches: int, name: str = "test_countdown"):
        self._remaining = batches
        self._name = name
        self.runs = 0

    @property
    def name(self) -> str:
        return self._name

    def get_args(self) -> dict[str, Any]:
        return {"remaining": self._remaining}

    def run(self) -> None:
        self.runs += 1
        if self._remaining:
            self._remaining -= 1

    def is_complete(self) -> bool:
        return self._remaining == 0


class ExplodingJob(CountdownJob):
    def run(self) -> None:
        raise RuntimeError("job crashed")


class ShiftingVersionManager(EnrolmentManager):
    """Reports the queued versions in turn, then repeats the last one."""

    def __init__(self, *args, versions: list[str], **kwargs):
        super().__init__(*args, **kwargs)
        self._versions = list(versions)

    def get_enrolment_calculation_version(self) -> str:
        if len(self._versions) > 1:
            return self._versions.pop(0)
        return self._versions[0]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def queue(db_session, clock):
    return SqlDeferredTaskQueue(db_session, clock)


@pytest.fixture
def settings():
    return EnrolmentBatchSettings(learner_batch_size=2)


@pytest.fixture
def scheduler(db_session, manager, queue, clock, settings):
    return EnrolmentJobScheduler(
        session=db_session,
        enrolment_manager=manager,
        task_queue=queue,
        clock=clock,
        settings=settings,
    )


# =============================================================================
# Starting jobs
# =============================================================================


class TestStartCourseCalculation:
    def test_submits_pending_task_with_resumable_args(self, scheduler, queue, make_course):
        course_id = make_course()

        job = scheduler.start_course_calculation_job(course_id, invalidated_only=True)

        (task,) = queue.pending(COURSE_JOB)
        assert task.args == job.get_args()
        assert task.args["course_id"] == str(course_id)
        assert task.args["invalidated_only"] is True
        assert task.args["batch_size"] == 40
        assert job.is_complete() is False

    def test_custom_batch_size(self, scheduler, queue, make_course):
        scheduler.start_course_calculation_job(make_course(), False, batch_size=5)

        assert queue.pending(COURSE_JOB)[0].args["batch_size"] == 5

    def test_each_start_is_a_separate_sweep(self, scheduler, queue, make_course):
        course_id = make_course()
        scheduler.start_course_calculation_job(course_id, False)
        scheduler.start_course_calculation_job(course_id, False)

        assert len(queue.pending(COURSE_JOB)) == 2


class TestMaybeStartLearnerCalculation:
    def test_starts_when_gate_is_unset(self, scheduler, queue):
        job = scheduler.maybe_start_learner_calculation()

        assert job is not None
        assert [t.name for t in queue.pending()] == [LEARNER_JOB]
        assert queue.pending()[0].args == {"batch_size": 2}

    def test_does_nothing_when_gate_is_current(self, scheduler, queue, manager):
        scheduler.version_gate.advance(manager.get_enrolment_calculation_version())

        assert scheduler.maybe_start_learner_calculation() is None
        assert queue.pending() == ()

    def test_repeated_calls_keep_a_single_pending_task(self, scheduler, queue):
        scheduler.maybe_start_learner_calculation()
        scheduler.maybe_start_learner_calculation()

        assert len(queue.pending(LEARNER_JOB)) == 1

    def test_provider_version_bump_restarts_sweep(
        self, db_session, queue, clock, settings, scheduler, manager,
    ):
        scheduler.version_gate.advance(manager.get_enrolment_calculation_version())

        class BumpedManualProvider(ManualEnrolmentProvider):
            @property
            def version(self) -> int:
                return 2

        bumped = EnrolmentJobScheduler(
            db_session,
            EnrolmentManager(db_session, [BumpedManualProvider()], clock),
            queue,
            clock,
            settings,
        )

        assert bumped.maybe_start_learner_calculation() is not None


# =============================================================================
# Learner sweep
# =============================================================================


class TestRunLearnerCalculation:
    def test_incomplete_run_is_rescheduled(self, scheduler, queue, make_learner):
        for _ in range(3):
            make_learner()

        result = scheduler.run_learner_calculation()

        assert result.status == JobRunStatus.RESCHEDULED
        assert result.processed == 2
        assert result.args == {"batch_size": 2}
        assert [t.args for t in queue.pending(LEARNER_JOB)] == [{"batch_size": 2}]

    def test_sweep_completes_and_advances_gate(
        self, scheduler, manager, make_learner, make_course,
    ):
        make_course()
        for _ in range(3):
            make_learner()

        statuses = []
        for _ in range(10):
            result = scheduler.run_learner_calculation({"batch_size": 2})
            statuses.append(result.status)
            if result.status == JobRunStatus.COMPLETED:
                break

        assert statuses == [
            JobRunStatus.RESCHEDULED,
            JobRunStatus.RESCHEDULED,
            JobRunStatus.COMPLETED,
        ]
        assert scheduler.version_gate.is_current(manager.get_enrolment_calculation_version())

    def test_gate_not_advanced_before_completion(self, scheduler, make_learner):
        for _ in range(3):
            make_learner()

        scheduler.run_learner_calculation()

        assert scheduler.version_gate.get_version() is None

    def test_completed_sweep_does_not_reschedule(self, scheduler, queue):
        result = scheduler.run_learner_calculation()

        assert result.status == JobRunStatus.COMPLETED
        assert queue.pending() == ()

    def test_version_change_during_sweep_keeps_gate(
        self, db_session, queue, clock, settings, captured_logs,
    ):
        shifting = ShiftingVersionManager(
            db_session, [ManualEnrolmentProvider()], clock,
            versions=["v1", "v1", "v2"],
        )
        scheduler = EnrolmentJobScheduler(db_session, shifting, queue, clock, settings)

        result = scheduler.run_learner_calculation()

        assert result.status == JobRunStatus.COMPLETED
        assert scheduler.version_gate.get_version() is None
        assert any(
            r["message"] == "calculation_version_changed_during_sweep"
            for r in captured_logs()
        )

    def test_reschedule_delay_comes_from_settings(
        self, db_session, manager, queue, clock, make_learner,
    ):
        for _ in range(2):
            make_learner()
        scheduler = EnrolmentJobScheduler(
            db_session, manager, queue, clock,
            EnrolmentBatchSettings(learner_batch_size=1, reschedule_delay_seconds=30),
        )

        scheduler.run_learner_calculation()

        (task,) = queue.pending(LEARNER_JOB)
        expected = (clock.now() + timedelta(seconds=30)).replace(tzinfo=None)
        assert task.run_after.replace(tzinfo=None) == expected


# =============================================================================
# Course sweep
# =============================================================================


class TestRunCourseCalculation:
    def test_runs_one_batch_from_flat_args(self, scheduler, queue, make_learner, make_course):
        course_id = make_course()
        for _ in range(3):
            make_learner()
        job = scheduler.start_course_calculation_job(course_id, False, batch_size=2)
        (task,) = queue.pending(COURSE_JOB)

        result = scheduler.run_course_calculation(task.args)

        assert result.status == JobRunStatus.RESCHEDULED
        assert result.processed == 2
        assert result.args["job_id"] == job.job_id

    def test_course_sweep_completes(self, scheduler, make_learner, make_course):
        course_id = make_course()
        make_learner()
        args = scheduler.start_course_calculation_job(course_id, False).get_args()

        first = scheduler.run_course_calculation(args)
        second = scheduler.run_course_calculation(args)

        assert first.status == JobRunStatus.RESCHEDULED
        assert second.status == JobRunStatus.COMPLETED


# =============================================================================
# Generic run()
# =============================================================================


class TestRun:
    def test_complete_job_fires_callback_once(self, scheduler, queue):
        calls = []
        job = CountdownJob(batches=1)

        result = scheduler.run(job, lambda: calls.append(True))

        assert result.status == JobRunStatus.COMPLETED
        assert calls == [True]
        assert queue.pending() == ()

    def test_incomplete_job_is_resubmitted_without_callback(self, scheduler, queue):
        calls = []
        job = CountdownJob(batches=3)

        result = scheduler.run(job, lambda: calls.append(True))

        assert result.status == JobRunStatus.RESCHEDULED
        assert calls == []
        (task,) = queue.pending("test_countdown")
        assert task.args == {"remaining": 2}

    def test_job_runs_exactly_once_per_invocation(self, scheduler):
        job = CountdownJob(batches=5)
        scheduler.run(job)
        assert job.runs == 1

    def test_jobs_without_batch_outcome_report_zero_counts(self, scheduler):
        result = scheduler.run(CountdownJob(batches=1))
        assert (result.processed, result.failed) == (0, 0)

    def test_held_lease_skips_run(self, scheduler, queue, session_factory, clock):
        JobLeaseManager(session_factory, clock).acquire("test_countdown", "someone-else")
        job = CountdownJob(batches=2)

        result = scheduler.run(job)

        assert result.status == JobRunStatus.SKIPPED
        assert job.runs == 0
        assert queue.pending() == ()

    def test_lease_is_visible_to_other_connections_while_job_runs(
        self, file_session_factory, manager, clock,
    ):
        seen = []

        class ObservingJob(CountdownJob):
            def run(self) -> None:
                with file_session_factory() as other:
                    seen.append(
                        other.execute(
                            select(JobLeaseModel.holder).where(
                                JobLeaseModel.job_name == self.name,
                            )
                        ).scalar_one_or_none()
                    )
                with pytest.raises(JobAlreadyRunningError):
                    JobLeaseManager(file_session_factory, clock).acquire(
                        self.name, "worker-2",
                    )
                super().run()

        with file_session_factory() as session:
            scheduler = EnrolmentJobScheduler(
                session, manager, SqlDeferredTaskQueue(session, clock), clock,
            )
            result = scheduler.run(ObservingJob(batches=1))

        assert result.status == JobRunStatus.COMPLETED
        assert seen[0] is not None
        leases = JobLeaseManager(file_session_factory, clock)
        assert leases.current_holder("test_countdown") is None

    def test_lease_released_after_run(self, scheduler, session_factory, clock):
        scheduler.run(CountdownJob(batches=2))

        assert JobLeaseManager(session_factory, clock).current_holder("test_countdown") is None

    def test_lease_released_when_job_raises(self, scheduler, session_factory, clock):
        with pytest.raises(RuntimeError, match="job crashed"):
            scheduler.run(ExplodingJob(batches=1))

        assert JobLeaseManager(session_factory, clock).current_holder("test_countdown") is None

    def test_run_logs_outcome_with_job_context(self, scheduler, captured_logs):
        scheduler.run(CountdownJob(batches=1))

        (finished,) = [r for r in captured_logs() if r["message"] == "job_run_finished"]
        assert finished["job_name"] == "test_countdown"
        assert finished["status"] == "completed"


# =============================================================================
# Background job names
# =============================================================================


class TestGetBackgroundJobs:
    def test_adds_both_job_names(self, scheduler):
        assert scheduler.get_background_jobs([]) == [LEARNER_JOB, COURSE_JOB]

    def test_preserves_existing_entries(self, scheduler):
        assert scheduler.get_background_jobs(["other"]) == ["other", LEARNER_JOB, COURSE_JOB]

    def test_does_not_duplicate_names(self, scheduler):
        assert scheduler.get_background_jobs([COURSE_JOB]) == [COURSE_JOB, LEARNER_JOB]
