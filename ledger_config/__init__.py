"""
ledger_config -- single public entrypoint for ledger settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_settings()``.  No other component reads settings files or
    environment variables.  The ledger kernel (``completion_ledger``) never
    imports this package; ``ledger_config.bridges`` translates settings
    into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime settings flow through
      ``get_active_settings()``.
    - Unknown keys and unparseable values fail loudly (``ValueError``),
      both in files and in ``COMPLETION_LEDGER_*`` overrides.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- validation failures.

Audit relevance:
    Every successful call emits a ``LEDGER_CONFIG_TRACE`` log entry with the
    settings id, checksum and the names of overridden keys, tying payments
    to the configuration that governed them.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path

from ledger_config.loader import compute_checksum, load_yaml_file, parse_settings
from ledger_config.schema import LedgerSettings

_logger = logging.getLogger("completion_ledger.config")

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"

ENV_PREFIX = "COMPLETION_LEDGER_"


def get_active_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """The ONLY public settings entrypoint.

    Loads ``path`` (default ``ledger_config/sets/default.yaml``), then applies
    ``COMPLETION_LEDGER_<KEY>`` overrides from ``environ`` (``os.environ``
    when None).

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If a key is unknown or a value fails validation.
    """
    settings_file = Path(path) if path is not None else _DEFAULT_SETTINGS_FILE
    settings = parse_settings(load_yaml_file(settings_file))

    overrides = _env_overrides(os.environ if environ is None else environ)
    if overrides:
        settings = parse_settings(overrides, base=settings)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "settings_id": settings.settings_id,
            "settings_file": str(settings_file),
            "checksum": compute_checksum(settings),
            "overridden_keys": sorted(overrides),
        },
    )
    return settings


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides = {}
    for f in fields(LedgerSettings):
        value = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value is not None:
            overrides[f.name] = value
    return overrides


__all__ = [
    "ENV_PREFIX",
    "LedgerSettings",
    "get_active_settings",
]
