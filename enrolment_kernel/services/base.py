"""
BaseService -- abstract base for kernel write-side services.

Responsibility:
    Common constructor and session-handling contract.  Services persist via
    ``session.flush()`` -- never ``session.commit()``.  The caller (task
    runner, application bootstrap, test harness) owns commit/rollback.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from enrolment_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session):
        self.session = session
