"""
DeferredTaskRunner -- in-process polling runner for the deferred task queue.

Contract:
    Each ``tick()`` claims due pending tasks and invokes the handler
    registered for the task name with a session and the task's args.  Every
    task gets its own commit: the claim is committed before the handler
    runs, and the handler's work is committed together with the DONE mark.

Architecture: enrolment_batch/services.  Uses SqlDeferredTaskQueue on
    sessions produced by the injected factory.

Invariants enforced:
    - All timestamps from the injected Clock.
    - A failing handler rolls back its own work only, including provider
      state handles cached on the session; the attempt is counted and the
      task is retried until ``max_attempts`` is reached.
    - Graceful shutdown: the stop signal is checked between tasks.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from sqlalchemy.orm import Session

from enrolment_batch.domain.types import DeferredTask
from enrolment_batch.services.deferred_queue import SqlDeferredTaskQueue
from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.exceptions import JobNotRegisteredError
from enrolment_kernel.logging_config import LogContext, get_logger
from enrolment_kernel.services.provider_state_store import ProviderStateStore

logger = get_logger("batch.task_runner")

TaskHandler = Callable[[Session, dict[str, Any]], Any]


class DeferredTaskRunner:
    """Runs due deferred tasks through registered handlers.

    Non-goals:
        - NOT a distributed worker (no leader election); job leases guard
          concurrent runs of the same job.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
        max_attempts: int = 3,
        batch_limit: int = 10,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._max_attempts = max_attempts
        self._batch_limit = batch_limit
        self._handlers: dict[str, TaskHandler] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register(self, name: str, handler: TaskHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"Handler for '{name}' is already registered")
        self._handlers[name] = handler

    def get_handler(self, name: str) -> TaskHandler:
        """
        Raises:
            JobNotRegisteredError: If no handler is registered for ``name``.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise JobNotRegisteredError(name, self.registered_names())
        return handler

    def registered_names(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Run due tasks (public for testing).

        Returns the number of tasks whose handler completed.
        """
        session = self._session_factory()
        try:
            due = SqlDeferredTaskQueue(session, self._clock).due_tasks(self._batch_limit)
            completed = 0
            for task in due:
                if self._stop_event.is_set():
                    break
                if self._run_task(session, task):
                    completed += 1
            return completed
        except Exception:
            session.rollback()
            ProviderStateStore.reset_stores(session)
            logger.exception("runner_tick_failed")
            return 0
        finally:
            session.close()

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="enrolment-task-runner",
            daemon=True,
        )
        self._thread.start()
        logger.info("runner_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current task to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("runner_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("runner_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _run_task(self, session: Session, task: DeferredTask) -> bool:
        queue = SqlDeferredTaskQueue(session, self._clock)
        task_extra = {"task_id": str(task.task_id), "task_name": task.name}

        try:
            handler = self.get_handler(task.name)
        except JobNotRegisteredError as exc:
            logger.error("task_handler_missing", extra=task_extra)
            queue.mark_failed(task.task_id, str(exc), retry=False)
            session.commit()
            return False

        claimed = queue.mark_running(task.task_id)
        session.commit()

        try:
            with LogContext.bind(correlation_id=str(task.task_id)):
                handler(session, dict(task.args))
            queue.mark_done(task.task_id)
            session.commit()
        except Exception as exc:
            session.rollback()
            ProviderStateStore.reset_stores(session)
            retry = claimed.attempts < self._max_attempts
            logger.exception(
                "task_failed",
                extra={
                    **task_extra,
                    "attempt": claimed.attempts,
                    "will_retry": retry,
                },
            )
            queue.mark_failed(task.task_id, str(exc), retry=retry)
            session.commit()
            return False

        logger.info("task_completed", extra=task_extra)
        return True
