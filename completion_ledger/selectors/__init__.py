"""Read-only queries over the completion ledger."""

from completion_ledger.selectors.base import BaseSelector
from completion_ledger.selectors.ledger_selector import (
    LedgerSelector,
    ProjectPaymentSummary,
    progress_percent,
)

__all__ = [
    "BaseSelector",
    "LedgerSelector",
    "ProjectPaymentSummary",
    "progress_percent",
]
