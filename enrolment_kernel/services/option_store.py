"""
OptionStore -- named scalar settings persisted in the ``options`` table.

Backs the version gate and the site salt.  Values are strings; an absent
option reads as None.
"""

from __future__ import annotations

from sqlalchemy import select

from enrolment_kernel.models.option import OptionModel
from enrolment_kernel.services.base import BaseService


class OptionStore(BaseService[OptionModel]):
    """Read/write access to single named values."""

    def get(self, name: str, default: str | None = None) -> str | None:
        model = self._find(name)
        if model is None or model.value is None:
            return default
        return model.value

    def set(self, name: str, value: str) -> None:
        model = self._find(name)
        if model is None:
            self.session.add(OptionModel(name=name, value=value))
        else:
            model.value = value
        self.session.flush()

    def delete(self, name: str) -> bool:
        model = self._find(name)
        if model is None:
            return False
        self.session.delete(model)
        self.session.flush()
        return True

    def _find(self, name: str) -> OptionModel | None:
        return self.session.execute(
            select(OptionModel).where(OptionModel.name == name)
        ).scalar_one_or_none()
