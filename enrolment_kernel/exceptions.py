"""
Typed exception hierarchy for the enrolment kernel.

Every exception carries a ``code`` class attribute (machine-readable,
log-safe) and its structured data as instance attributes, so callers catch
by type and log by field rather than parsing messages.

    EnrolmentKernelError (base)
    |
    +-- EntityError
    |   +-- LearnerNotFoundError
    |   +-- CourseNotFoundError
    |
    +-- JobError
    |   +-- JobNotRegisteredError
    |   +-- JobAlreadyRunningError
    |   +-- DeferredTaskNotFoundError
    |
    +-- ConfigurationError
        +-- InvalidSettingsError

Not every failure is an exception: an unparsable provider state payload is
reported as ``None`` by ``ProviderState.from_serialized_array`` and an empty
batch is the normal termination signal of a job.
"""

from __future__ import annotations


class EnrolmentKernelError(Exception):
    """
    Base exception for all enrolment kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "ENROLMENT_KERNEL_ERROR"


# Entity-related exceptions


class EntityError(EnrolmentKernelError):
    """Base exception for learner / course lookups."""

    code: str = "ENTITY_ERROR"


class LearnerNotFoundError(EntityError):
    """The learner does not exist."""

    code: str = "LEARNER_NOT_FOUND"

    def __init__(self, learner_id: str):
        self.learner_id = learner_id
        super().__init__(f"Learner not found: {learner_id}")


class CourseNotFoundError(EntityError):
    """The course does not exist."""

    code: str = "COURSE_NOT_FOUND"

    def __init__(self, course_id: str):
        self.course_id = course_id
        super().__init__(f"Course not found: {course_id}")


# Job-related exceptions


class JobError(EnrolmentKernelError):
    """Base exception for background job errors."""

    code: str = "JOB_ERROR"


class JobNotRegisteredError(JobError):
    """No handler is registered for a deferred task name."""

    code: str = "JOB_NOT_REGISTERED"

    def __init__(self, job_name: str, available: tuple[str, ...] = ()):
        self.job_name = job_name
        self.available = list(available)
        super().__init__(
            f"No handler registered for job '{job_name}'. "
            f"Available: {sorted(available)}"
        )


class JobAlreadyRunningError(JobError):
    """Another holder owns the lease for this job name."""

    code: str = "JOB_ALREADY_RUNNING"

    def __init__(self, job_name: str, holder: str):
        self.job_name = job_name
        self.holder = holder
        super().__init__(
            f"Job '{job_name}' is already running (lease held by {holder})"
        )


class DeferredTaskNotFoundError(JobError):
    """A deferred task id does not exist."""

    code: str = "DEFERRED_TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Deferred task not found: {task_id}")


# Configuration exceptions


class ConfigurationError(EnrolmentKernelError):
    """Base exception for settings errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidSettingsError(ConfigurationError):
    """A settings value is unknown, mistyped or out of range."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid setting '{field}': {reason}")
