"""
Module: completion_ledger.models.payment_intent
Responsibility: Write-ahead record of a payment action in flight.
Architecture position: Ledger > Models.

Invariants enforced:
    - (idempotency_key, attempt) is unique.  A new attempt for a key is
      opened only after every prior attempt is rolled_back.
    - A pending intent is committed BEFORE any invoice or budget write, so a
      crash between the two writes is always visible to the recovery sweep.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from completion_ledger.db.base import TrackedBase
from completion_ledger.domain.values import IntentStatus, InvoiceType


class PaymentIntent(TrackedBase):
    """One attempt at one idempotent payment action."""

    __tablename__ = "completion_payment_intents"

    __table_args__ = (
        UniqueConstraint("idempotency_key", "attempt", name="uq_intent_key_attempt"),
        Index("idx_intent_status", "status"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(300), nullable=False)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    project_id: Mapped[str] = mapped_column(String(100), nullable=False)

    task_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    invoice_type: Mapped[InvoiceType] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[IntentStatus] = mapped_column(
        String(20),
        nullable=False,
        default=IntentStatus.PENDING,
    )

    invoice_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    detail: Mapped[str | None] = mapped_column(String(4000), nullable=True)
