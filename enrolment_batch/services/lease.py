"""
JobLeaseManager -- single-flight guard per job name.

Contract:
    ``acquire()`` takes the lease for a job name or raises
    ``JobAlreadyRunningError`` when another holder owns an unexpired one.
    ``release()`` frees it.  Leases expire after ``ttl_seconds`` so a
    crashed run cannot block its job forever.

Invariants enforced:
    - Every lease operation runs in its own short transaction on a session
      from the injected factory and is committed before it returns, so
      other workers see the holder while the guarded job is still running.
    - The lease row is read with SELECT ... FOR UPDATE.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from enrolment_batch.models.tasks import JobLeaseModel
from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.exceptions import JobAlreadyRunningError
from enrolment_kernel.logging_config import get_logger

logger = get_logger("batch.lease")

DEFAULT_LEASE_TTL_SECONDS = 600


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class JobLeaseManager:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)

    def acquire(self, job_name: str, holder: str) -> None:
        """Take the lease for ``job_name`` and commit it.

        Re-acquiring a lease already held by ``holder`` extends it.

        Raises:
            JobAlreadyRunningError: If another holder owns an unexpired lease.
        """
        try:
            with self._session_factory() as session, session.begin():
                self._acquire(session, job_name, holder)
        except IntegrityError:
            # Another worker inserted the first lease row concurrently
            raise JobAlreadyRunningError(
                job_name, self.current_holder(job_name) or "unknown",
            ) from None
        logger.debug("lease_acquired", extra={"lease_job": job_name})

    def release(self, job_name: str, holder: str) -> None:
        """Free the lease if ``holder`` still owns it."""
        with self._session_factory() as session, session.begin():
            lease = self._lock(session, job_name)
            if lease is None or lease.holder != holder:
                return
            lease.holder = None
            lease.expires_at = None
        logger.debug("lease_released", extra={"lease_job": job_name})

    def current_holder(self, job_name: str) -> str | None:
        """Holder of an unexpired lease, if any."""
        with self._session_factory() as session, session.begin():
            lease = session.execute(
                select(JobLeaseModel).where(JobLeaseModel.job_name == job_name)
            ).scalar_one_or_none()
            if lease is None or lease.holder is None:
                return None
            if self._expired(lease, self._clock.now()):
                return None
            return lease.holder

    def _acquire(self, session: Session, job_name: str, holder: str) -> None:
        now = self._clock.now()
        lease = self._lock(session, job_name)

        if lease is None:
            session.add(
                JobLeaseModel(
                    job_name=job_name,
                    holder=holder,
                    expires_at=now + self._ttl,
                )
            )
            session.flush()
            return

        if lease.holder is not None and lease.holder != holder:
            if not self._expired(lease, now):
                raise JobAlreadyRunningError(job_name, lease.holder)
            logger.warning(
                "lease_expired_taken_over",
                extra={"lease_job": job_name, "previous_holder": lease.holder},
            )

        lease.holder = holder
        lease.expires_at = now + self._ttl

    @staticmethod
    def _lock(session: Session, job_name: str) -> JobLeaseModel | None:
        return session.execute(
            select(JobLeaseModel)
            .where(JobLeaseModel.job_name == job_name)
            .with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def _expired(lease: JobLeaseModel, now: datetime) -> bool:
        return lease.expires_at is None or _as_utc(lease.expires_at) <= now
