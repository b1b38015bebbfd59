"""
enrolment_batch.domain.types -- Pure frozen dataclasses for the batch engine.

ZERO I/O.  Frozen dataclasses with str-enum status fields and tuples for
immutable collections.

Job arguments are typed per job variant and converted explicitly to and
from the flat ``str -> primitive`` mapping the deferred task queue stores.
That flat mapping is all a later invocation has to rebuild the job from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID, uuid4


LEARNER_CALCULATION_BATCH_SIZE = 20
DEFAULT_COURSE_BATCH_SIZE = 40


# =============================================================================
# Enums
# =============================================================================


class BackgroundJobName(str, Enum):
    """Stable names the deferred task queue routes and cancels by."""

    LEARNER_CALCULATION = "enrolment_calculate_learner_enrolments"
    COURSE_CALCULATION = "enrolment_calculate_course_enrolments"


class JobRunStatus(str, Enum):
    """Outcome of one scheduler-managed job invocation."""

    COMPLETED = "completed"  # No more batches; completion callback fired
    RESCHEDULED = "rescheduled"  # Batch processed, next batch submitted
    SKIPPED = "skipped"  # Lease held by another run; nothing executed


class DeferredTaskStatus(str, Enum):
    """Lifecycle of a queued deferred task."""

    PENDING = "pending"  # Waiting for run_after
    RUNNING = "running"  # Claimed by a runner tick
    DONE = "done"  # Handler returned
    FAILED = "failed"  # Attempts exhausted or no handler
    CANCELLED = "cancelled"  # Bulk-cancelled before running


# =============================================================================
# Job arguments
# =============================================================================


@dataclass(frozen=True)
class LearnerCalculationArgs:
    """Arguments of the learner calculation job."""

    batch_size: int = LEARNER_CALCULATION_BATCH_SIZE

    def to_args(self) -> dict[str, Any]:
        return {"batch_size": self.batch_size}

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> LearnerCalculationArgs:
        batch_size = args.get("batch_size")
        if batch_size is None:
            return cls()
        return cls(batch_size=int(batch_size))


@dataclass(frozen=True)
class CourseCalculationArgs:
    """Arguments of the course calculation job.

    ``job_id`` identifies one logical sweep of a course across all of its
    reschedules; it names the progress marker stamped on visited learners.
    """

    course_id: UUID
    invalidated_only: bool = False
    batch_size: int = DEFAULT_COURSE_BATCH_SIZE
    job_id: str = field(default_factory=lambda: uuid4().hex)

    def to_args(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "course_id": str(self.course_id),
            "invalidated_only": self.invalidated_only,
            "batch_size": self.batch_size,
        }

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> CourseCalculationArgs:
        course_id = args["course_id"]
        batch_size = args.get("batch_size")
        return cls(
            course_id=course_id if isinstance(course_id, UUID) else UUID(str(course_id)),
            invalidated_only=bool(args.get("invalidated_only", False)),
            batch_size=(
                DEFAULT_COURSE_BATCH_SIZE if batch_size is None else int(batch_size)
            ),
            job_id=args.get("job_id") or uuid4().hex,
        )


# =============================================================================
# Run results
# =============================================================================


@dataclass(frozen=True)
class BatchOutcome:
    """Entities handled by the most recent ``run()`` of a job."""

    processed: tuple[UUID, ...] = ()
    failed: tuple[UUID, ...] = ()

    @property
    def size(self) -> int:
        return len(self.processed) + len(self.failed)


@dataclass(frozen=True)
class JobRunResult:
    """Returned by ``EnrolmentJobScheduler.run()``."""

    job_name: str
    status: JobRunStatus
    processed: int = 0
    failed: int = 0
    args: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Deferred tasks
# =============================================================================


@dataclass(frozen=True)
class DeferredTask:
    """Immutable snapshot of a queued deferred task."""

    task_id: UUID
    name: str
    status: DeferredTaskStatus
    args: dict[str, Any] = field(default_factory=dict)
    run_after: datetime | None = None
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime | None = None
