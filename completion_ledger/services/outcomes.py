"""
Results returned by the payment entry points.

A PaymentOutcome is the caller's whole answer: what happened, the invoice
involved (new or pre-existing), and for rejections the gate's code,
reason and payload.  Only infrastructure failures are raised.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from completion_ledger.domain.dtos import InvoiceRecord
from completion_ledger.domain.eligibility import EligibilityDecision
from completion_ledger.domain.values import InvoiceType


class PaymentStatus(str, Enum):
    PAID = "paid"
    ALREADY_PROCESSED = "already_processed"
    PENDING_SETTLEMENT = "pending_settlement"
    CLOSED = "closed"
    REJECTED = "rejected"
    INTEGRITY_FAILED = "integrity_failed"


SUCCESS_STATUSES = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.ALREADY_PROCESSED,
    PaymentStatus.PENDING_SETTLEMENT,
    PaymentStatus.CLOSED,
})


@dataclass(frozen=True)
class PaymentOutcome:
    status: PaymentStatus
    action: InvoiceType
    project_id: str
    task_id: str | None = None
    idempotency_key: str | None = None
    invoice: InvoiceRecord | None = None
    amount: Decimal | None = None
    code: str | None = None
    reason: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    errors: tuple[str, ...] = ()

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def invoice_number(self) -> str | None:
        return self.invoice.invoice_number if self.invoice else None

    @classmethod
    def from_decision(
        cls,
        decision: EligibilityDecision,
        idempotency_key: str | None = None,
    ) -> "PaymentOutcome":
        """Rejected gate decision -> REJECTED, or ALREADY_PROCESSED for a replay."""
        existing = decision.existing_invoice
        return cls(
            status=PaymentStatus.ALREADY_PROCESSED if decision.is_replay else PaymentStatus.REJECTED,
            action=decision.action,
            project_id=decision.project_id,
            task_id=decision.task_id,
            idempotency_key=idempotency_key,
            invoice=existing,
            amount=existing.total_amount if existing else None,
            code=decision.code.value if decision.code else None,
            reason=decision.reason,
            payload=dict(decision.payload),
        )
