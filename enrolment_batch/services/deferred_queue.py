"""
Deferred task queue -- durable submission of future job invocations.

Contract:
    ``DeferredTaskQueue`` is what the job scheduler needs: schedule a named
    invocation with flat args, cancel every pending invocation of a set of
    names, and list what is pending.  ``SqlDeferredTaskQueue`` implements it
    on the ``deferred_tasks`` table and adds the claim/complete operations
    used by ``DeferredTaskRunner``.

Architecture: enrolment_batch/services.  Imports from enrolment_batch.domain,
    enrolment_batch.models and kernel infrastructure.

Invariants enforced:
    - Scheduling an invocation identical (name and canonical args) to one
      already pending returns the pending task instead of a duplicate, and
      a failed task is not retried while an identical one is pending.
    - All timestamps come from the injected Clock.
    - Never commits; the caller owns the transaction.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from enrolment_batch.domain.types import DeferredTask, DeferredTaskStatus
from enrolment_batch.models.tasks import DeferredTaskModel
from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.exceptions import DeferredTaskNotFoundError
from enrolment_kernel.logging_config import get_logger

logger = get_logger("batch.deferred_queue")


def canonical_args_key(args: Mapping[str, Any]) -> str:
    """Order-independent key for an args mapping."""
    return json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)


@runtime_checkable
class DeferredTaskQueue(Protocol):
    """Queue interface the job scheduler submits through."""

    def schedule(
        self,
        name: str,
        args: Mapping[str, Any] | None = None,
        delay_seconds: int = 0,
    ) -> DeferredTask:
        ...

    def cancel_all(self, names: Iterable[str]) -> int:
        ...

    def pending(self, name: str | None = None) -> tuple[DeferredTask, ...]:
        ...


class SqlDeferredTaskQueue:
    """``DeferredTaskQueue`` backed by the ``deferred_tasks`` table.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT execute tasks -- see ``DeferredTaskRunner``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def schedule(
        self,
        name: str,
        args: Mapping[str, Any] | None = None,
        delay_seconds: int = 0,
    ) -> DeferredTask:
        args = dict(args or {})
        args_key = canonical_args_key(args)

        existing = self._find_pending(name, args_key)

        if existing is not None:
            logger.debug(
                "task_already_pending",
                extra={"task_id": str(existing.id), "task_name": name},
            )
            return existing.to_dto()

        run_after = self._clock.now() + timedelta(seconds=delay_seconds)
        model = DeferredTaskModel(
            name=name,
            args=args,
            args_key=args_key,
            status=DeferredTaskStatus.PENDING.value,
            run_after=run_after,
            attempts=0,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "task_scheduled",
            extra={
                "task_id": str(model.id),
                "task_name": name,
                "run_after": run_after,
            },
        )
        return model.to_dto()

    def cancel_all(self, names: Iterable[str]) -> int:
        """Cancel every pending task with one of ``names``; returns the count."""
        names = list(names)
        if not names:
            return 0

        result = self._session.execute(
            update(DeferredTaskModel)
            .where(
                DeferredTaskModel.name.in_(names),
                DeferredTaskModel.status == DeferredTaskStatus.PENDING.value,
            )
            .values(status=DeferredTaskStatus.CANCELLED.value)
            .execution_options(synchronize_session="fetch")
        )
        cancelled = result.rowcount or 0

        logger.info(
            "tasks_cancelled",
            extra={"task_names": names, "cancelled": cancelled},
        )
        return cancelled

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def pending(self, name: str | None = None) -> tuple[DeferredTask, ...]:
        stmt = select(DeferredTaskModel).where(
            DeferredTaskModel.status == DeferredTaskStatus.PENDING.value,
        )
        if name is not None:
            stmt = stmt.where(DeferredTaskModel.name == name)
        stmt = stmt.order_by(DeferredTaskModel.run_after, DeferredTaskModel.name)
        return tuple(m.to_dto() for m in self._session.execute(stmt).scalars())

    def due_tasks(self, limit: int) -> tuple[DeferredTask, ...]:
        """Pending tasks whose ``run_after`` has passed, oldest first."""
        stmt = (
            select(DeferredTaskModel)
            .where(
                DeferredTaskModel.status == DeferredTaskStatus.PENDING.value,
                DeferredTaskModel.run_after <= self._clock.now(),
            )
            .order_by(DeferredTaskModel.run_after, DeferredTaskModel.name)
            .limit(limit)
        )
        return tuple(m.to_dto() for m in self._session.execute(stmt).scalars())

    def get(self, task_id: UUID) -> DeferredTask | None:
        model = self._session.get(DeferredTaskModel, task_id)
        return model.to_dto() if model is not None else None

    # -------------------------------------------------------------------------
    # Lifecycle (runner side)
    # -------------------------------------------------------------------------

    def mark_running(self, task_id: UUID) -> DeferredTask:
        """Claim a task and count the attempt."""
        model = self._require(task_id)
        model.status = DeferredTaskStatus.RUNNING.value
        model.attempts = model.attempts + 1
        self._session.flush()
        return model.to_dto()

    def mark_done(self, task_id: UUID) -> None:
        model = self._require(task_id)
        model.status = DeferredTaskStatus.DONE.value
        model.last_error = None
        self._session.flush()

    def mark_failed(self, task_id: UUID, error: str, retry: bool) -> DeferredTask:
        """Record a failed attempt; with ``retry`` the task becomes pending again.

        A retry is dropped (the task is cancelled) when an identical task was
        scheduled while this one ran, so the pair never runs twice.
        """
        model = self._require(task_id)
        if not retry:
            model.status = DeferredTaskStatus.FAILED.value
        elif self._find_pending(model.name, model.args_key, exclude=model.id) is not None:
            model.status = DeferredTaskStatus.CANCELLED.value
            logger.info(
                "task_retry_superseded",
                extra={"task_id": str(model.id), "task_name": model.name},
            )
        else:
            model.status = DeferredTaskStatus.PENDING.value
        model.last_error = error
        self._session.flush()
        return model.to_dto()

    def _find_pending(
        self,
        name: str,
        args_key: str,
        exclude: UUID | None = None,
    ) -> DeferredTaskModel | None:
        stmt = select(DeferredTaskModel).where(
            DeferredTaskModel.name == name,
            DeferredTaskModel.args_key == args_key,
            DeferredTaskModel.status == DeferredTaskStatus.PENDING.value,
        )
        if exclude is not None:
            stmt = stmt.where(DeferredTaskModel.id != exclude)
        return self._session.execute(stmt).scalars().first()

    def _require(self, task_id: UUID) -> DeferredTaskModel:
        model = self._session.get(DeferredTaskModel, task_id)
        if model is None:
            raise DeferredTaskNotFoundError(str(task_id))
        return model
