"""
ProviderStateStore -- keyed accessor for provider state records.

Responsibility:
    Loads and saves the ``ProviderState`` records of one enrolment entity
    (a learner/course pair), one record per access provider.  Records are
    loaded lazily and created empty when nothing is stored yet.

Contract:
    - ``ProviderStateStore.get(session, learner_id, course_id)`` returns the
      same handle for the same key for the lifetime of the session, so two
      callers in one batch never hold diverging copies.  Handles are kept in
      ``Session.info``.
    - ``save()`` writes every loaded record back (flush only; the caller
      commits).

Non-goals:
    - No protection against concurrent writers outside this process; one
      job run owns the entities in its batch.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from enrolment_kernel.domain.clock import Clock, SystemClock
from enrolment_kernel.domain.provider_state import ProviderState
from enrolment_kernel.logging_config import get_logger
from enrolment_kernel.models.provider_state import ProviderStateModel

logger = get_logger("kernel.provider_state_store")

_REGISTRY_KEY = "enrolment.provider_state_stores"


class ProviderStateStore:
    """Provider state records for one learner/course pair."""

    def __init__(
        self,
        session: Session,
        learner_id: UUID,
        course_id: UUID,
        clock: Clock | None = None,
    ):
        self._session = session
        self._learner_id = learner_id
        self._course_id = course_id
        self._clock = clock or SystemClock()
        self._states: dict[str, ProviderState] = {}

    # -------------------------------------------------------------------------
    # Handle registry
    # -------------------------------------------------------------------------

    @classmethod
    def get(
        cls,
        session: Session,
        learner_id: UUID,
        course_id: UUID,
        clock: Clock | None = None,
    ) -> ProviderStateStore:
        """Return the session's store handle for this pair, creating it once."""
        registry: dict[tuple[UUID, UUID], ProviderStateStore] = session.info.setdefault(
            _REGISTRY_KEY, {},
        )
        key = (learner_id, course_id)
        store = registry.get(key)
        if store is None:
            store = cls(session, learner_id, course_id, clock)
            registry[key] = store
        return store

    @classmethod
    def reset_stores(cls, session: Session) -> None:
        """Drop every cached handle for ``session``."""
        session.info.pop(_REGISTRY_KEY, None)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def learner_id(self) -> UUID:
        return self._learner_id

    @property
    def course_id(self) -> UUID:
        return self._course_id

    @property
    def clock(self) -> Clock:
        return self._clock

    def get_provider_state(self, provider_id: str) -> ProviderState:
        """State record for ``provider_id``; empty when none is stored."""
        state = self._states.get(provider_id)
        if state is not None:
            return state

        model = self._find(provider_id)
        if model is not None:
            state = ProviderState.from_serialized_array(self, model.payload)
            if state is None:
                logger.warning(
                    "provider_state_unreadable",
                    extra={
                        "provider_id": provider_id,
                        "learner_id": str(self._learner_id),
                        "course_id": str(self._course_id),
                    },
                )

        if state is None:
            state = ProviderState.create(self)

        self._states[provider_id] = state
        return state

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self) -> None:
        """Persist every loaded record of this entity."""
        for provider_id, state in self._states.items():
            payload = state.to_json()
            model = self._find(provider_id)
            if model is None:
                self._session.add(
                    ProviderStateModel(
                        learner_id=self._learner_id,
                        course_id=self._course_id,
                        provider_id=provider_id,
                        payload=payload,
                    )
                )
            elif model.payload != payload:
                model.payload = payload
        self._session.flush()

    def delete_all(self) -> None:
        """Remove all stored records of this entity and forget loaded ones."""
        self._session.execute(
            delete(ProviderStateModel).where(
                ProviderStateModel.learner_id == self._learner_id,
                ProviderStateModel.course_id == self._course_id,
            )
        )
        self._states.clear()

    def _find(self, provider_id: str) -> ProviderStateModel | None:
        return self._session.execute(
            select(ProviderStateModel).where(
                ProviderStateModel.learner_id == self._learner_id,
                ProviderStateModel.course_id == self._course_id,
                ProviderStateModel.provider_id == provider_id,
            )
        ).scalar_one_or_none()
