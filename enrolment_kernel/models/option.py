"""
ORM model for named site options (single persisted scalars).

Holds the version gate value and the site salt.
"""

from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from enrolment_kernel.db.base import TimestampedBase


class OptionModel(TimestampedBase):
    __tablename__ = "options"

    name: Mapped[str] = mapped_column(String(191), nullable=False, unique=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
