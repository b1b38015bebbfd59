"""
BackgroundJob protocol and the batched entity job base class.

Contract:
    ``BackgroundJob`` is the interface the job scheduler drives: a stable
    ``name``, the ``get_args()`` needed to resume it, one ``run()`` per
    invocation and ``is_complete()`` afterwards.

    ``BatchedEntityJob`` implements ``run()`` for jobs that page through
    learners: select at most one batch, process each learner in its own
    SAVEPOINT, and report complete once the selection comes back empty.

Architecture:
    enrolment_batch/jobs.  Imports from enrolment_batch.domain and kernel
    services.

Invariants enforced:
    - A freshly constructed job is not complete.
    - ``run()`` touches at most one batch of learners.
    - One learner's failure never aborts the rest of the batch; the failed
      learner is marked so it drops out of the selection predicate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from enrolment_batch.domain.types import BatchOutcome
from enrolment_kernel.logging_config import LogContext, get_logger
from enrolment_kernel.services.enrolment_manager import EnrolmentManager
from enrolment_kernel.services.provider_state_store import ProviderStateStore

logger = get_logger("batch.jobs")


# =============================================================================
# BackgroundJob Protocol
# =============================================================================


@runtime_checkable
class BackgroundJob(Protocol):
    """Protocol for jobs the ``EnrolmentJobScheduler`` can run.

    Non-goals:
        - Does NOT reschedule itself -- the scheduler does that.
        - Does NOT commit -- the caller owns the transaction.
    """

    @property
    def name(self) -> str:
        """Job name used as the deferred task name."""
        ...

    def get_args(self) -> dict[str, Any]:
        """Flat mapping sufficient to rebuild the job on the next invocation."""
        ...

    def run(self) -> None:
        """Process one batch, or mark the job complete if none remains."""
        ...

    def is_complete(self) -> bool:
        ...


# =============================================================================
# BatchedEntityJob
# =============================================================================


class BatchedEntityJob(ABC):
    """Shared batch loop for learner-paging jobs."""

    def __init__(self, session: Session, enrolment_manager: EnrolmentManager):
        self._session = session
        self._manager = enrolment_manager
        self._is_complete = False
        self._last_batch = BatchOutcome()

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def get_args(self) -> dict[str, Any]: ...

    @abstractmethod
    def _select_batch(self) -> tuple[UUID, ...]:
        """Next learners to process, at most one batch."""

    @abstractmethod
    def _process(self, learner_id: UUID) -> None:
        """Recalculate one learner.  Runs inside a SAVEPOINT."""

    def _on_failure(self, learner_id: UUID, exc: Exception) -> None:
        """Record a failed learner.  Runs after the SAVEPOINT rolled back."""

    def _on_complete(self) -> None:
        """Hook run once when the selection comes back empty."""

    @property
    def last_batch(self) -> BatchOutcome:
        return self._last_batch

    def is_complete(self) -> bool:
        return self._is_complete

    def run(self) -> None:
        learner_ids = self._select_batch()

        if not learner_ids:
            self._last_batch = BatchOutcome()
            self._is_complete = True
            self._on_complete()
            logger.info("job_population_exhausted", extra={"job": self.name})
            return

        processed: list[UUID] = []
        failed: list[UUID] = []

        for learner_id in learner_ids:
            with LogContext.bind(learner_id=str(learner_id)):
                try:
                    with self._session.begin_nested():
                        self._process(learner_id)
                except Exception as exc:
                    # Cached store handles may hold state from the rolled back savepoint
                    ProviderStateStore.reset_stores(self._session)
                    logger.exception(
                        "learner_recalculation_failed",
                        extra={"job": self.name},
                    )
                    self._on_failure(learner_id, exc)
                    failed.append(learner_id)
                else:
                    processed.append(learner_id)

        self._last_batch = BatchOutcome(
            processed=tuple(processed),
            failed=tuple(failed),
        )

        logger.info(
            "job_batch_processed",
            extra={
                "job": self.name,
                "processed": len(processed),
                "failed": len(failed),
            },
        )
