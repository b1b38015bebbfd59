"""
Settings schema for the enrolment batch engine.

Every field has a default matching ``defaults.yaml``; the dataclass is
frozen so settings cannot drift after startup.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EnrolmentBatchSettings:
    """Tuning knobs for job batching, rescheduling and the task runner."""

    learner_batch_size: int = 20  # Learners per learner-calculation run
    reschedule_delay_seconds: int = 0  # Delay before the next batch runs
    lease_ttl_seconds: int = 600  # Per-job-name lease lifetime
    max_task_attempts: int = 3  # Deferred task attempts before FAILED
    tick_interval_seconds: int = 60  # Runner polling interval
    runner_batch_limit: int = 10  # Due tasks executed per tick


# Fields that must be > 0; the rest must be >= 0.
POSITIVE_FIELDS: frozenset[str] = frozenset({
    "learner_batch_size",
    "lease_ttl_seconds",
    "max_task_attempts",
    "tick_interval_seconds",
    "runner_batch_limit",
})
