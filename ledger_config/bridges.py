"""
Config -> Kernel Bridges.

Functions that convert LedgerSettings into kernel inputs.  They live here
(the producer) because the kernel must NEVER import ledger_config.

Usage:
    from ledger_config import get_active_settings
    from ledger_config.bridges import build_payment_policy, build_unit_of_work_factory

    settings = get_active_settings()
    policy = build_payment_policy(settings)
    uow_factory = build_unit_of_work_factory(settings)
"""

from __future__ import annotations

from completion_ledger.db.engine import get_session_factory, init_engine_from_url
from completion_ledger.domain.policy import PaymentPolicy
from completion_ledger.logging_config import configure_logging
from completion_ledger.stores.base import UnitOfWorkFactory
from completion_ledger.stores.sql import sql_unit_of_work_factory
from ledger_config.schema import LedgerSettings


def build_payment_policy(settings: LedgerSettings) -> PaymentPolicy:
    """Operational payment knobs from settings."""
    return PaymentPolicy(
        invoice_due_days=settings.invoice_due_days,
        platform_fee_rate=settings.platform_fee_rate,
        max_conflict_retries=settings.max_conflict_retries,
        max_read_retries=settings.max_read_retries,
        invoice_prefix_fallback=settings.invoice_prefix_fallback,
        currency=settings.currency,
        settlement_claim_seconds=settings.settlement_claim_seconds,
    )


def build_unit_of_work_factory(settings: LedgerSettings) -> UnitOfWorkFactory:
    """SQL unit-of-work factory on the process engine for ``settings.database_url``."""
    init_engine_from_url(
        settings.database_url,
        echo=settings.echo_sql,
        pool_size=settings.pool_size,
    )
    return sql_unit_of_work_factory(get_session_factory())


def configure_logging_from_settings(settings: LedgerSettings) -> None:
    configure_logging(level=settings.log_level.upper())
