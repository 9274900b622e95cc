"""Persistence ports and their SQLAlchemy implementation."""

from completion_ledger.stores.base import (
    InvoiceStore,
    LedgerUnitOfWork,
    PaymentIntentStore,
    ProjectStore,
    SequenceAllocator,
    TaskStore,
    UnitOfWorkFactory,
)

__all__ = [
    "ProjectStore",
    "TaskStore",
    "InvoiceStore",
    "PaymentIntentStore",
    "SequenceAllocator",
    "LedgerUnitOfWork",
    "UnitOfWorkFactory",
]
