"""
ProviderState -- per-provider working state for one enrolment entity.

Responsibility:
    Holds the free-form key/value data an access provider keeps about a
    learner's enrolment in a course, plus a bounded log of what the provider
    did.  The record has no identity of its own: it belongs to exactly one
    ``ProviderStateStore`` (one learner/course pair) under one provider id.

Serialized form (the only storage format with an exact contract)::

    {"d":{"key":value,...},"l":[[timestamp,"message"],...]}

    - ``d`` before ``l``; keys of ``d`` in insertion order.
    - keys whose value is null are never stored.
    - compact separators, so identical content is byte-identical.

Invariants enforced:
    - ``len(log) <= MAX_LOG_ENTRIES`` after every insert (oldest dropped).
    - log order is insertion order, oldest first.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:
    from enrolment_kernel.services.provider_state_store import ProviderStateStore

MAX_LOG_ENTRIES = 30

_JSON_SEPARATORS = (",", ":")


def _is_log_entry(entry: Any) -> bool:
    return isinstance(entry, (list, tuple)) and len(entry) == 2


class ProviderState:
    """Bounded log plus data bag for one (provider, entity) pair."""

    def __init__(
        self,
        store: ProviderStateStore,
        data: dict[str, Any] | None = None,
        logs: list[list[Any]] | None = None,
    ):
        self._store = store
        self._data: dict[str, Any] = data if data is not None else {}
        self._logs: list[list[Any]] = logs if logs is not None else []

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def create(cls, store: ProviderStateStore) -> ProviderState:
        """Create an empty state record."""
        return cls(store, {}, [])

    @classmethod
    def from_serialized_array(
        cls,
        store: ProviderStateStore,
        raw: Mapping[str, Any] | str | None,
    ) -> ProviderState | None:
        """Restore a state record from its structured or JSON string form.

        Returns None when ``raw`` is empty, does not parse into a mapping, or
        holds a log entry that is not a ``[timestamp, message]`` pair.
        Missing ``d`` defaults to ``{}`` and missing ``l`` to ``[]``.
        """
        if not raw:
            return None

        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return None

        if not raw or not isinstance(raw, Mapping):
            return None

        data = raw.get("d") or {}
        logs = raw.get("l") or []
        if not isinstance(data, Mapping) or not isinstance(logs, list):
            return None
        if not all(_is_log_entry(entry) for entry in logs):
            return None

        return cls(
            store,
            {k: v for k, v in data.items() if v is not None},
            [list(entry) for entry in logs],
        )

    # -------------------------------------------------------------------------
    # Data
    # -------------------------------------------------------------------------

    def get_stored_value(self, key: str) -> Any:
        """Value stored under ``key``, or None when absent."""
        return self._data.get(key)

    def set_stored_value(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; a None value removes the key."""
        if value is None:
            self._data.pop(key, None)
            return
        self._data[key] = value

    # -------------------------------------------------------------------------
    # Log
    # -------------------------------------------------------------------------

    def add_log_message(self, message: str) -> None:
        """Append a timestamped message, dropping the oldest beyond the cap."""
        self._logs.append([self._store.clock.timestamp(), message])
        if len(self._logs) > MAX_LOG_ENTRIES:
            del self._logs[: len(self._logs) - MAX_LOG_ENTRIES]

    def get_logs(self) -> list[list[Any]]:
        """Log entries as ``[timestamp, message]`` pairs, oldest first."""
        return self._logs

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @property
    def store(self) -> ProviderStateStore:
        return self._store

    def save(self) -> None:
        """Persist through the owning store."""
        self._store.save()

    def to_dict(self) -> dict[str, Any]:
        return {"d": dict(self._data), "l": [list(e) for e in self._logs]}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=_JSON_SEPARATORS)

    def __repr__(self) -> str:
        return (
            f"ProviderState(keys={list(self._data)!r}, "
            f"log_entries={len(self._logs)})"
        )
