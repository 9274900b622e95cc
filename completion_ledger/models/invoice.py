"""
Module: completion_ledger.models.invoice
Responsibility: ORM persistence for completion invoices.
Architecture position: Ledger > Models.

Invariants enforced:
    - invoice_number is unique.
    - total_amount > 0 (CHECK constraint).
    - At most one live (non-void) upfront and one live final invoice per
      project: partial unique index on (project_id, invoice_type) where
      task_id IS NULL.
    - At most one live invoice per task: partial unique index on task_id
      where task_id IS NOT NULL.

Failure modes:
    - IntegrityError when a concurrent writer already holds the live slot;
      the orchestrator treats it as a lost race and re-runs from the gate.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from completion_ledger.db.base import TrackedBase
from completion_ledger.domain.values import InvoiceStatus, InvoiceType

_PROJECT_SLOT_PREDICATE = "task_id IS NULL AND status <> 'void'"
_TASK_SLOT_PREDICATE = "task_id IS NOT NULL AND status <> 'void'"


class Invoice(TrackedBase):
    """
    An invoice issued by the ledger.

    Contract:
        Amount fields never change after creation.  Only status, paid_at,
        transaction_id and the settlement claim move (settlement, voiding).
    """

    __tablename__ = "completion_invoices"

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_invoice_amount_positive"),
        Index(
            "uq_invoice_live_project_slot",
            "project_id",
            "invoice_type",
            unique=True,
            postgresql_where=text(_PROJECT_SLOT_PREDICATE),
            sqlite_where=text(_PROJECT_SLOT_PREDICATE),
        ),
        Index(
            "uq_invoice_live_task_slot",
            "task_id",
            unique=True,
            postgresql_where=text(_TASK_SLOT_PREDICATE),
            sqlite_where=text(_TASK_SLOT_PREDICATE),
        ),
        Index("idx_invoice_project", "project_id"),
        Index("idx_invoice_idempotency", "idempotency_key"),
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    project_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("completion_projects.project_id"),
        nullable=False,
    )

    task_id: Mapped[str | None] = mapped_column(
        String(100),
        ForeignKey("completion_tasks.task_id"),
        nullable=True,
    )

    invoice_type: Mapped[InvoiceType] = mapped_column(String(30), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(String(20), nullable=False)

    issue_date: Mapped[datetime] = mapped_column(nullable=False)
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Platform fee split of total_amount
    freelancer_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    platform_fee: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Set while a gateway call for this invoice is in flight
    settlement_claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Key of the payment action that produced this invoice (None for imports)
    idempotency_key: Mapped[str | None] = mapped_column(String(300), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Invoice {self.invoice_number} {self.invoice_type} "
            f"{self.total_amount} {self.status}>"
        )
