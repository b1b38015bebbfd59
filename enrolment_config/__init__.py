"""
enrolment_config -- single public entrypoint for engine settings.

Responsibility:
    ``get_settings()`` is the only way the batch engine obtains its
    configuration: the packaged ``defaults.yaml`` overlaid by an optional
    deployment file.  The result is a frozen ``EnrolmentBatchSettings``.

Architecture position:
    Configuration -- sits above ``enrolment_kernel`` and beside
    ``enrolment_batch``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the override file does not exist.
    - ``InvalidSettingsError`` -- unknown key or invalid value.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path

from enrolment_config.loader import load_settings, parse_settings
from enrolment_config.schema import EnrolmentBatchSettings

_logger = logging.getLogger("enrolment.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_settings(config_path: Path | str | None = None) -> EnrolmentBatchSettings:
    """Load defaults, overlay ``config_path`` when given, and validate."""
    paths = [DEFAULTS_PATH]
    if config_path is not None:
        paths.append(Path(config_path))

    settings = load_settings(*paths)

    _logger.info(
        "settings_loaded",
        extra={
            "config_path": str(config_path) if config_path else None,
            **asdict(settings),
        },
    )
    return settings


__all__ = [
    "DEFAULTS_PATH",
    "EnrolmentBatchSettings",
    "get_settings",
    "parse_settings",
]
