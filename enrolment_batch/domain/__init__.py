"""
enrolment_batch.domain -- Pure types and value objects for the batch engine.

ZERO I/O.  All types are frozen dataclasses or str enums.
"""

from enrolment_batch.domain.types import (
    DEFAULT_COURSE_BATCH_SIZE,
    LEARNER_CALCULATION_BATCH_SIZE,
    BackgroundJobName,
    BatchOutcome,
    CourseCalculationArgs,
    DeferredTask,
    DeferredTaskStatus,
    JobRunResult,
    JobRunStatus,
    LearnerCalculationArgs,
)

__all__ = [
    "BackgroundJobName",
    "BatchOutcome",
    "CourseCalculationArgs",
    "DEFAULT_COURSE_BATCH_SIZE",
    "DeferredTask",
    "DeferredTaskStatus",
    "JobRunResult",
    "JobRunStatus",
    "LEARNER_CALCULATION_BATCH_SIZE",
    "LearnerCalculationArgs",
]
