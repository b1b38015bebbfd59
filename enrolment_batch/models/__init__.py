"""
enrolment_batch.models -- ORM models for the deferred task queue and leases.

Importing this package registers the batch tables on ``Base.metadata``.
"""

from enrolment_batch.models.tasks import DeferredTaskModel, JobLeaseModel

__all__ = [
    "DeferredTaskModel",
    "JobLeaseModel",
]
