"""
LearnerMetaStore -- write side of the ``learner_meta`` table.

One value per (learner, key); setting an existing key overwrites it.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select

from enrolment_kernel.models.learner import LearnerMetaModel
from enrolment_kernel.services.base import BaseService


class LearnerMetaStore(BaseService[LearnerMetaModel]):

    def get(self, learner_id: UUID, meta_key: str) -> str | None:
        model = self._find(learner_id, meta_key)
        return model.meta_value if model is not None else None

    def set(self, learner_id: UUID, meta_key: str, meta_value: str) -> None:
        model = self._find(learner_id, meta_key)
        if model is None:
            self.session.add(
                LearnerMetaModel(
                    learner_id=learner_id,
                    meta_key=meta_key,
                    meta_value=meta_value,
                )
            )
        else:
            model.meta_value = meta_value
        self.session.flush()

    def delete(self, learner_id: UUID, meta_key: str) -> None:
        self.session.execute(
            delete(LearnerMetaModel).where(
                LearnerMetaModel.learner_id == learner_id,
                LearnerMetaModel.meta_key == meta_key,
            )
        )

    def delete_for_all_learners(self, meta_key: str) -> int:
        """Remove ``meta_key`` from every learner; returns rows removed."""
        result = self.session.execute(
            delete(LearnerMetaModel).where(LearnerMetaModel.meta_key == meta_key)
        )
        return result.rowcount or 0

    def _find(self, learner_id: UUID, meta_key: str) -> LearnerMetaModel | None:
        return self.session.execute(
            select(LearnerMetaModel).where(
                LearnerMetaModel.learner_id == learner_id,
                LearnerMetaModel.meta_key == meta_key,
            )
        ).scalar_one_or_none()
