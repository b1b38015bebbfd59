"""Services for the enrolment kernel (write side)."""

from enrolment_kernel.services.access_providers import (
    AccessProvider,
    ManualEnrolmentProvider,
)
from enrolment_kernel.services.enrolment_manager import (
    SITE_SALT_OPTION_NAME,
    EnrolmentManager,
)
from enrolment_kernel.services.learner_meta_store import LearnerMetaStore
from enrolment_kernel.services.option_store import OptionStore
from enrolment_kernel.services.provider_state_store import ProviderStateStore

__all__ = [
    "AccessProvider",
    "EnrolmentManager",
    "LearnerMetaStore",
    "ManualEnrolmentProvider",
    "OptionStore",
    "ProviderStateStore",
    "SITE_SALT_OPTION_NAME",
]
