"""
VersionGate -- persisted record of the last completed learner sweep.

The gate holds the enrolment calculation version that every learner was
last swept at.  When the manager's current version differs from it, a
learner calculation sweep is needed.  Only a completed sweep advances it.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from enrolment_kernel.logging_config import get_logger
from enrolment_kernel.services.option_store import OptionStore

logger = get_logger("batch.version_gate")

CALCULATION_VERSION_OPTION_NAME = "enrolment-scheduler-calculation-version"


class VersionGate:

    def __init__(
        self,
        option_store: OptionStore,
        option_name: str = CALCULATION_VERSION_OPTION_NAME,
    ):
        self._options = option_store
        self._option_name = option_name

    @classmethod
    def for_session(cls, session: Session) -> VersionGate:
        return cls(OptionStore(session))

    @property
    def option_name(self) -> str:
        return self._option_name

    def get_version(self) -> str | None:
        return self._options.get(self._option_name)

    def is_current(self, version: str) -> bool:
        return self.get_version() == version

    def advance(self, version: str) -> bool:
        """Store ``version``; returns False when it was already stored."""
        previous = self.get_version()
        if previous == version:
            return False
        self._options.set(self._option_name, version)
        logger.info(
            "version_gate_advanced",
            extra={"previous_version": previous, "calculation_version": version},
        )
        return True
