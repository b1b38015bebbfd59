"""
enrolment_kernel.domain -- Pure value objects and the clock.

ZERO I/O.  ``ProviderState`` only reaches storage through its owning store.
"""

from enrolment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from enrolment_kernel.domain.dtos import Course, EnrolmentResult, Learner
from enrolment_kernel.domain.provider_state import MAX_LOG_ENTRIES, ProviderState

__all__ = [
    "Clock",
    "Course",
    "DeterministicClock",
    "EnrolmentResult",
    "Learner",
    "MAX_LOG_ENTRIES",
    "ProviderState",
    "SystemClock",
]
