"""
Tests for enrolment_batch.services.lease.

Validates single-flight acquisition per job name, release, re-entry by the
same holder and takeover of expired leases.
"""

import pytest
from sqlalchemy import select

from enrolment_batch.models.tasks import JobLeaseModel
from enrolment_batch.services.lease import JobLeaseManager
from enrolment_kernel.exceptions import JobAlreadyRunningError


@pytest.fixture
def leases(session_factory, clock):
    return JobLeaseManager(session_factory, clock, ttl_seconds=60)


class TestJobLeaseManager:
    def test_first_acquire_succeeds(self, leases):
        leases.acquire("job", "holder-a")
        assert leases.current_holder("job") == "holder-a"

    def test_second_holder_is_rejected(self, leases):
        leases.acquire("job", "holder-a")

        with pytest.raises(JobAlreadyRunningError) as exc_info:
            leases.acquire("job", "holder-b")

        assert exc_info.value.holder == "holder-a"
        assert exc_info.value.job_name == "job"

    def test_leases_are_per_job_name(self, leases):
        leases.acquire("job-1", "holder-a")
        leases.acquire("job-2", "holder-b")

        assert leases.current_holder("job-2") == "holder-b"

    def test_same_holder_may_reacquire(self, leases):
        leases.acquire("job", "holder-a")
        leases.acquire("job", "holder-a")

        assert leases.current_holder("job") == "holder-a"

    def test_release_frees_the_lease(self, leases):
        leases.acquire("job", "holder-a")
        leases.release("job", "holder-a")

        assert leases.current_holder("job") is None
        leases.acquire("job", "holder-b")
        assert leases.current_holder("job") == "holder-b"

    def test_release_by_other_holder_is_ignored(self, leases):
        leases.acquire("job", "holder-a")
        leases.release("job", "holder-b")

        assert leases.current_holder("job") == "holder-a"

    def test_release_of_unknown_job_is_a_no_op(self, leases):
        leases.release("never-acquired", "holder-a")
        assert leases.current_holder("never-acquired") is None

    def test_expired_lease_can_be_taken_over(self, leases, clock, captured_logs):
        leases.acquire("job", "holder-a")
        clock.advance(61)

        assert leases.current_holder("job") is None
        leases.acquire("job", "holder-b")

        assert leases.current_holder("job") == "holder-b"
        assert any(r["message"] == "lease_expired_taken_over" for r in captured_logs())


class TestLeaseTransactions:
    """Lease changes are committed on their own, independent of any caller session."""

    @staticmethod
    def _stored_holder(session_factory, job_name):
        with session_factory() as session:
            return session.execute(
                select(JobLeaseModel.holder).where(JobLeaseModel.job_name == job_name)
            ).scalar_one_or_none()

    def test_acquire_is_visible_to_a_new_connection(self, file_session_factory, clock):
        JobLeaseManager(file_session_factory, clock).acquire("job", "holder-a")

        assert self._stored_holder(file_session_factory, "job") == "holder-a"

    def test_second_worker_is_rejected(self, file_session_factory, clock):
        JobLeaseManager(file_session_factory, clock).acquire("job", "worker-1")

        with pytest.raises(JobAlreadyRunningError) as exc_info:
            JobLeaseManager(file_session_factory, clock).acquire("job", "worker-2")

        assert exc_info.value.holder == "worker-1"

    def test_release_is_visible_to_a_new_connection(self, file_session_factory, clock):
        leases = JobLeaseManager(file_session_factory, clock)
        leases.acquire("job", "holder-a")
        leases.release("job", "holder-a")

        assert self._stored_holder(file_session_factory, "job") is None
