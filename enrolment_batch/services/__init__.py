"""Services for the enrolment batch engine."""

from enrolment_batch.services.deferred_queue import (
    DeferredTaskQueue,
    SqlDeferredTaskQueue,
    canonical_args_key,
)
from enrolment_batch.services.job_scheduler import (
    BACKGROUND_JOB_NAMES,
    EnrolmentJobScheduler,
)
from enrolment_batch.services.lease import JobLeaseManager
from enrolment_batch.services.task_runner import DeferredTaskRunner
from enrolment_batch.services.version_gate import (
    CALCULATION_VERSION_OPTION_NAME,
    VersionGate,
)

__all__ = [
    "BACKGROUND_JOB_NAMES",
    "CALCULATION_VERSION_OPTION_NAME",
    "DeferredTaskQueue",
    "DeferredTaskRunner",
    "EnrolmentJobScheduler",
    "JobLeaseManager",
    "SqlDeferredTaskQueue",
    "VersionGate",
    "canonical_args_key",
]
