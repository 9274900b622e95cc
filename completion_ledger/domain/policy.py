"""
PaymentPolicy -- tunable knobs the ledger kernel accepts.

Built from ``ledger_config`` settings by ``ledger_config.bridges``; the
kernel itself never reads configuration files.  Nothing in here can relax
a LedgerInvariant: the 12% / 88% split and the rounding rule are not
configurable.
"""

from dataclasses import dataclass
from decimal import Decimal

from completion_ledger.domain.budget import DEFAULT_PLATFORM_FEE_RATE


@dataclass(frozen=True)
class PaymentPolicy:
    """Operational parameters for payment actions."""

    invoice_due_days: int = 14
    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE
    max_conflict_retries: int = 3
    max_read_retries: int = 2
    invoice_prefix_fallback: str = "COMP"
    currency: str = "USD"
    # A settlement claim older than this may be taken over
    settlement_claim_seconds: int = 300

    def __post_init__(self) -> None:
        if self.invoice_due_days < 0:
            raise ValueError("invoice_due_days must be >= 0")
        if not Decimal("0") <= self.platform_fee_rate < Decimal("1"):
            raise ValueError("platform_fee_rate must be in [0, 1)")
        if self.max_conflict_retries < 0 or self.max_read_retries < 0:
            raise ValueError("retry limits must be >= 0")
        if not self.invoice_prefix_fallback:
            raise ValueError("invoice_prefix_fallback must not be empty")
        if self.settlement_claim_seconds <= 0:
            raise ValueError("settlement_claim_seconds must be > 0")


DEFAULT_POLICY = PaymentPolicy()
