"""
Access providers -- pluggable sources of enrolment decisions.

Contract:
    An ``AccessProvider`` decides whether a learner may access a course.
    Each provider has a stable ``provider_id`` and an integer ``version``;
    bumping the version of any registered provider changes the enrolment
    calculation version and triggers a new learner sweep.

    ``has_access`` receives the provider's own ``ProviderState`` for the
    learner/course pair, so a provider can keep working data and an audit
    log without its own table.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from enrolment_kernel.domain.dtos import Learner
from enrolment_kernel.domain.provider_state import ProviderState


@runtime_checkable
class AccessProvider(Protocol):
    """Interface every access provider implements."""

    @property
    def provider_id(self) -> str: ...

    @property
    def version(self) -> int: ...

    def handles_access(self, course_id: UUID) -> bool:
        """Whether this provider has an opinion about ``course_id``."""
        ...

    def has_access(
        self,
        learner: Learner,
        course_id: UUID,
        state: ProviderState,
    ) -> bool:
        """Whether ``learner`` is granted access to ``course_id``."""
        ...


class ManualEnrolmentProvider:
    """Enrolments granted and withdrawn by hand (e.g. by an instructor).

    The grant lives in the provider state under ``enrolled``; every change is
    appended to the state's log.
    """

    ENROLLED_KEY = "enrolled"

    @property
    def provider_id(self) -> str:
        return "manual"

    @property
    def version(self) -> int:
        return 1

    def handles_access(self, course_id: UUID) -> bool:
        return True

    def has_access(
        self,
        learner: Learner,
        course_id: UUID,
        state: ProviderState,
    ) -> bool:
        return bool(state.get_stored_value(self.ENROLLED_KEY))

    def enrol(self, state: ProviderState, reason: str | None = None) -> None:
        state.set_stored_value(self.ENROLLED_KEY, True)
        state.add_log_message(reason or "Learner was enrolled manually.")

    def withdraw(self, state: ProviderState, reason: str | None = None) -> None:
        state.set_stored_value(self.ENROLLED_KEY, None)
        state.add_log_message(reason or "Learner was withdrawn manually.")
