"""
Settings Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into a frozen
``ledger_config.schema.LedgerSettings``.  Runtime callers go through
``ledger_config.get_active_settings()``; this module is its tooling.

Invariants enforced
-------------------
* Unknown keys are rejected; a typo never silently falls back to a default.
* Every value is converted to the field's declared type or rejected with
  ``ValueError``.  Money rates are parsed as ``Decimal`` from their string
  form, never through ``float``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or bad value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerSettings

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE | _FALSE:
        return value.strip().lower() in _TRUE
    raise ValueError(f"{name}: cannot parse boolean from {value!r}")


def parse_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name}: expected an integer, got {value!r}") from exc


def parse_decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected a decimal, got {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name}: expected a decimal, got {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"{name}: expected a finite decimal, got {value!r}")
    return result


def _convert(name: str, annotation: str, value: Any) -> Any:
    if annotation == "bool":
        return parse_bool(name, value)
    if annotation == "int":
        return parse_int(name, value)
    if annotation == "Decimal":
        return parse_decimal(name, value)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name}: expected a non-empty string, got {value!r}")
    return value


def parse_settings(data: dict[str, Any], base: LedgerSettings | None = None) -> LedgerSettings:
    """
    Build LedgerSettings from a mapping, on top of ``base`` (defaults if None).

    Raises:
        ValueError: unknown key, unconvertible value or out-of-range value.
    """
    known = {f.name: f for f in fields(LedgerSettings)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown settings keys: {', '.join(unknown)}")

    values = {name: getattr(base or LedgerSettings(), name) for name in known}
    for name, value in data.items():
        values[name] = _convert(name, str(known[name].type), value)

    settings = LedgerSettings(**values)
    _validate(settings)
    return settings


def _validate(settings: LedgerSettings) -> None:
    errors = []
    if settings.invoice_due_days < 0:
        errors.append("invoice_due_days must be >= 0")
    if not Decimal("0") <= settings.platform_fee_rate < Decimal("1"):
        errors.append("platform_fee_rate must be in [0, 1)")
    if settings.max_conflict_retries < 0:
        errors.append("max_conflict_retries must be >= 0")
    if settings.max_read_retries < 0:
        errors.append("max_read_retries must be >= 0")
    if settings.settlement_claim_seconds <= 0:
        errors.append("settlement_claim_seconds must be > 0")
    if settings.pool_size <= 0:
        errors.append("pool_size must be > 0")
    if settings.log_level.upper() not in _LOG_LEVELS:
        errors.append(f"log_level must be one of {sorted(_LOG_LEVELS)}")
    if errors:
        raise ValueError(
            "Settings validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


def compute_checksum(settings: LedgerSettings) -> str:
    """SHA-256 of the canonical JSON form; the database URL is excluded."""
    data = {
        f.name: getattr(settings, f.name)
        for f in fields(LedgerSettings)
        if f.name != "database_url"
    }
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
