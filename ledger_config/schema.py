"""
LedgerSettings schema.

The single typed view of a ledger deployment's configuration.  YAML files
under ``ledger_config/sets/`` are parsed into this type by the loader;
environment overrides are applied on top by ``get_active_settings()``.
Nothing here can change the 12% / 88% split or the rounding rule.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class LedgerSettings:
    """Deployment settings for the completion ledger."""

    database_url: str = "sqlite:///completion_ledger.db"
    echo_sql: bool = False
    pool_size: int = 20
    invoice_due_days: int = 14
    platform_fee_rate: Decimal = Decimal("0.05")
    max_conflict_retries: int = 3
    max_read_retries: int = 2
    invoice_prefix_fallback: str = "COMP"
    log_level: str = "INFO"
    currency: str = "USD"
    settlement_claim_seconds: int = 300
    settings_id: str = "default"
