"""Read-only selectors over kernel tables."""

from enrolment_kernel.selectors.base import BaseSelector
from enrolment_kernel.selectors.learner_selector import LearnerSelector

__all__ = ["BaseSelector", "LearnerSelector"]
