"""
enrolment_kernel.models -- ORM models for learners, courses and cached state.

Importing this package registers every kernel table on ``Base.metadata``.
"""

from enrolment_kernel.models.course import CourseModel, EnrolmentResultModel
from enrolment_kernel.models.learner import LearnerMetaModel, LearnerModel
from enrolment_kernel.models.option import OptionModel
from enrolment_kernel.models.provider_state import ProviderStateModel

__all__ = [
    "CourseModel",
    "EnrolmentResultModel",
    "LearnerMetaModel",
    "LearnerModel",
    "OptionModel",
    "ProviderStateModel",
]
