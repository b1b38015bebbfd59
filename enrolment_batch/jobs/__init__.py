"""
enrolment_batch.jobs -- Background jobs driven by the job scheduler.
"""

from enrolment_batch.jobs.base import BackgroundJob, BatchedEntityJob
from enrolment_batch.jobs.course_calculation import CourseCalculationJob
from enrolment_batch.jobs.learner_calculation import LearnerCalculationJob

__all__ = [
    "BackgroundJob",
    "BatchedEntityJob",
    "CourseCalculationJob",
    "LearnerCalculationJob",
]
