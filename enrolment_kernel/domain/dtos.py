"""
Frozen DTOs passed across the kernel boundary.

Selectors and the enrolment manager hand these to access providers and
jobs instead of live ORM instances, so providers never mutate rows directly.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class Learner:
    """Snapshot of a learner as seen by access providers."""

    learner_id: UUID
    login: str
    description: str = ""


@dataclass(frozen=True)
class Course:
    course_id: UUID
    title: str
    is_published: bool = True


@dataclass(frozen=True)
class EnrolmentResult:
    """Cached outcome of one learner/course enrolment calculation.

    ``calculation_version`` is None when the result has been invalidated.
    """

    learner_id: UUID
    course_id: UUID
    is_enrolled: bool
    calculation_version: str | None = None

    @property
    def is_invalidated(self) -> bool:
        return self.calculation_version is None
