"""
Settings loader (``enrolment_config.loader``).

Responsibility
--------------
Loads YAML settings files and parses them into the frozen
``EnrolmentBatchSettings`` dataclass.  Callers should use
``enrolment_config.get_settings()`` rather than this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top level not a mapping, unknown key, non-integer or out-of-range value
  -> ``InvalidSettingsError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from enrolment_config.schema import POSITIVE_FIELDS, EnrolmentBatchSettings
from enrolment_kernel.exceptions import InvalidSettingsError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    An empty file yields an empty dict.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidSettingsError(str(path), "top level must be a mapping")
    return data


def parse_settings(data: Mapping[str, Any]) -> EnrolmentBatchSettings:
    """Validate a flat mapping and build settings from it.

    Keys missing from ``data`` keep their dataclass defaults.
    """
    known = {f.name for f in fields(EnrolmentBatchSettings)}

    values: dict[str, int] = {}
    for key, value in data.items():
        if key not in known:
            raise InvalidSettingsError(key, "unknown setting")
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSettingsError(key, f"expected an integer, got {value!r}")
        if key in POSITIVE_FIELDS and value <= 0:
            raise InvalidSettingsError(key, f"must be positive, got {value}")
        if value < 0:
            raise InvalidSettingsError(key, f"must not be negative, got {value}")
        values[key] = value

    return EnrolmentBatchSettings(**values)


def load_settings(*paths: Path) -> EnrolmentBatchSettings:
    """Merge YAML files left to right (later files win) into settings."""
    merged: dict[str, Any] = {}
    for path in paths:
        merged.update(load_yaml_file(path))
    return parse_settings(merged)
