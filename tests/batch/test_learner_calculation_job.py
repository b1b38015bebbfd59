"""
Tests for enrolment_batch.jobs.learner_calculation.

Validates batch bounds, completion on an empty selection, savepoint
isolation of failing learners and termination of the sweep.
"""

from uuid import UUID

import pytest
from sqlalchemy import select

from enrolment_batch.domain.types import BackgroundJobName
from enrolment_batch.jobs.base import BackgroundJob
from enrolment_batch.jobs.learner_calculation import LearnerCalculationJob
from enrolment_kernel.models.course import EnrolmentResultModel
from enrolment_kernel.models.learner import (
    LEARNER_CALCULATION_FAILED_META_NAME,
    LEARNER_CALCULATION_META_NAME,
)
from enrolment_kernel.selectors.learner_selector import LearnerSelector
from enrolment_kernel.services.enrolment_manager import EnrolmentManager
from enrolment_kernel.services.access_providers import ManualEnrolmentProvider


# =============================================================================
# Test providers
# =============================================================================


class ExplodingProvider:
    """Raises for learners whose description contains 'explode'."""

    @property
    def provider_id(self) -> str:
        return "exploding"

    @property
    def version(self) -> int:
        return 1

    def handles_access(self, course_id: UUID) -> bool:
        return True

    def has_access(self, learner, course_id, state) -> bool:
        state.set_stored_value("seen", True)
        if "explode" in learner.description:
            raise RuntimeError(f"cannot evaluate {learner.login}")
        return False


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def exploding_manager(db_session, clock):
    return EnrolmentManager(db_session, [ManualEnrolmentProvider(), ExplodingProvider()], clock)


def _run_to_completion(job: LearnerCalculationJob, max_runs: int = 50) -> int:
    runs = 0
    while not job.is_complete():
        job.run()
        runs += 1
        assert runs <= max_runs, "job did not terminate"
    return runs


# =============================================================================
# Basics
# =============================================================================


class TestLearnerJobBasics:
    def test_satisfies_background_job_protocol(self, db_session, manager):
        assert isinstance(LearnerCalculationJob(db_session, manager), BackgroundJob)

    def test_name(self, db_session, manager):
        assert LearnerCalculationJob(db_session, manager).name == (
            BackgroundJobName.LEARNER_CALCULATION.value
        )

    def test_new_job_is_not_complete(self, db_session, manager):
        assert LearnerCalculationJob(db_session, manager).is_complete() is False

    def test_args_carry_batch_size(self, db_session, manager):
        job = LearnerCalculationJob(db_session, manager, batch_size=3)
        assert job.get_args() == {"batch_size": 3}

    def test_from_args_restores_batch_size(self, db_session, manager):
        job = LearnerCalculationJob.from_args(db_session, manager, {"batch_size": 4})
        assert job.batch_size == 4


# =============================================================================
# run()
# =============================================================================


class TestLearnerJobRun:
    def test_empty_population_completes_immediately(self, db_session, manager):
        job = LearnerCalculationJob(db_session, manager)

        job.run()

        assert job.is_complete() is True
        assert job.last_batch.size == 0

    def test_run_processes_at_most_one_batch(self, db_session, manager, make_learner, make_course):
        make_course()
        for _ in range(5):
            make_learner()
        job = LearnerCalculationJob(db_session, manager, batch_size=2)

        job.run()

        assert job.is_complete() is False
        assert len(job.last_batch.processed) == 2
        version = manager.get_enrolment_calculation_version()
        assert LearnerSelector(db_session).count_stale_learners(version) == 3

    def test_sweep_stamps_every_learner_then_completes(
        self, db_session, manager, make_learner, make_course,
    ):
        make_course()
        learners = [make_learner() for _ in range(5)]
        job = LearnerCalculationJob(db_session, manager, batch_size=2)

        runs = _run_to_completion(job)

        # Three batches of work and one empty selection
        assert runs == 4
        version = manager.get_enrolment_calculation_version()
        selector = LearnerSelector(db_session)
        for learner_id in learners:
            assert selector.get_meta(learner_id, LEARNER_CALCULATION_META_NAME) == version

    def test_exact_multiple_needs_a_trailing_empty_run(
        self, db_session, manager, make_learner,
    ):
        for _ in range(4):
            make_learner()
        job = LearnerCalculationJob(db_session, manager, batch_size=2)

        job.run()
        job.run()
        assert job.is_complete() is False

        job.run()
        assert job.is_complete() is True

    def test_already_current_learners_are_skipped(self, db_session, manager, make_learner):
        current = make_learner()
        manager.recalculate_enrolments(current)
        stale = make_learner()
        job = LearnerCalculationJob(db_session, manager)

        job.run()

        assert job.last_batch.processed == (stale,)

    def test_version_change_makes_learners_stale_again(
        self, db_session, manager, make_learner,
    ):
        make_learner()
        _run_to_completion(LearnerCalculationJob(db_session, manager))

        manager.reset_site_salt()
        job = LearnerCalculationJob(db_session, manager)
        job.run()

        assert len(job.last_batch.processed) == 1


# =============================================================================
# Failures
# =============================================================================


class TestLearnerJobFailures:
    def test_failing_learner_does_not_abort_batch(
        self, db_session, exploding_manager, make_learner, make_course,
    ):
        make_course()
        good_a = make_learner(description="fine")
        bad = make_learner(description="explode")
        good_b = make_learner(description="fine")
        job = LearnerCalculationJob(db_session, exploding_manager, batch_size=10)

        job.run()

        assert set(job.last_batch.processed) == {good_a, good_b}
        assert job.last_batch.failed == (bad,)

    def test_failed_learner_work_is_rolled_back(
        self, db_session, exploding_manager, make_learner, make_course,
    ):
        course_id = make_course()
        bad = make_learner(description="explode")
        job = LearnerCalculationJob(db_session, exploding_manager)

        job.run()

        results = db_session.execute(
            select(EnrolmentResultModel).where(EnrolmentResultModel.learner_id == bad)
        ).scalars().all()
        assert results == []
        selector = LearnerSelector(db_session)
        assert selector.get_meta(bad, LEARNER_CALCULATION_META_NAME) is None
        assert selector.get_result(bad, course_id) is None

    def test_failed_learner_is_marked_and_sweep_terminates(
        self, db_session, exploding_manager, make_learner, make_course,
    ):
        make_course()
        bad = make_learner(description="explode")
        make_learner(description="fine")
        job = LearnerCalculationJob(db_session, exploding_manager, batch_size=1)

        _run_to_completion(job)

        version = exploding_manager.get_enrolment_calculation_version()
        assert LearnerSelector(db_session).get_meta(
            bad, LEARNER_CALCULATION_FAILED_META_NAME,
        ) == version

    def test_failure_is_logged_with_learner_context(
        self, db_session, exploding_manager, make_learner, make_course, captured_logs,
    ):
        make_course()
        bad = make_learner(description="explode")

        LearnerCalculationJob(db_session, exploding_manager).run()

        failures = [r for r in captured_logs() if r["message"] == "learner_recalculation_failed"]
        assert len(failures) == 1
        assert failures[0]["learner_id"] == str(bad)
        assert failures[0]["exc_type"] == "RuntimeError"
