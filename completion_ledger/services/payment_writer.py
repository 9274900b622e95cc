"""
PaymentWriter -- the write half of a payment.

Responsibility:
    Given an open unit of work, a snapshot read under the project lock and
    the pending PaymentIntent, performs every write a payment consists of:

        1. allocate the invoice number
        2. create the invoice (fee split, due date, idempotency key)
        3. raise paid_to_date by the invoice amount (version-checked)
        4. flag the task invoice_paid (manual payments)
        5. resolve the intent as committed

    The caller commits.  Shared by PaymentOrchestrator and RecoveryService
    so a rolled-forward payment is indistinguishable from a normal one.

Architecture position:
    Ledger > Services.  No eligibility or budget decisions are made here;
    callers run the gate and the integrity check first.

Failure modes:
    - DuplicateInvoiceError / OptimisticLockError: a concurrent writer got
      there first.  The unit of work must be rolled back.
"""

from datetime import timedelta
from decimal import Decimal

from completion_ledger.domain.budget import platform_fee_split
from completion_ledger.domain.clock import Clock
from completion_ledger.domain.dtos import InvoiceRecord, PaymentIntentRecord, ProjectRecord
from completion_ledger.domain.eligibility import LedgerSnapshot
from completion_ledger.domain.policy import PaymentPolicy
from completion_ledger.domain.values import (
    IntentStatus,
    InvoiceStatus,
    InvoiceType,
    ProjectStatus,
)
from completion_ledger.logging_config import get_logger
from completion_ledger.services.invoice_number_service import InvoiceNumberService
from completion_ledger.stores.base import LedgerUnitOfWork

logger = get_logger("services.payment_writer")


class PaymentWriter:
    """
    Applies one payment inside a caller-owned unit of work.

    ``two_phase_final``: when True a final payment is written as a
    ``processing`` invoice and settled later through the gateway; the
    budget is still deducted now.  Upfront and manual invoices are always
    written ``paid``.
    """

    def __init__(self, clock: Clock, policy: PaymentPolicy, two_phase_final: bool = False):
        self._clock = clock
        self._policy = policy
        self._two_phase_final = two_phase_final

    def invoice_status_for(self, invoice_type: InvoiceType) -> InvoiceStatus:
        if invoice_type == InvoiceType.FINAL and self._two_phase_final:
            return InvoiceStatus.PROCESSING
        return InvoiceStatus.PAID

    def apply(
        self,
        uow: LedgerUnitOfWork,
        snapshot: LedgerSnapshot,
        intent: PaymentIntentRecord,
        amount: Decimal | None = None,
    ) -> tuple[InvoiceRecord, ProjectRecord]:
        project = snapshot.project
        amount = intent.amount if amount is None else amount
        now = self._clock.now()
        status = self.invoice_status_for(intent.invoice_type)
        freelancer_amount, platform_fee = platform_fee_split(
            amount, self._policy.platform_fee_rate
        )

        numbers = InvoiceNumberService(
            uow.sequences, uow.invoices, self._policy.invoice_prefix_fallback
        )
        invoice = uow.invoices.create(
            InvoiceRecord(
                invoice_number=numbers.allocate(project.commissioner_name),
                project_id=project.project_id,
                task_id=intent.task_id,
                invoice_type=intent.invoice_type,
                total_amount=amount,
                status=status,
                issue_date=now,
                due_date=now + timedelta(days=self._policy.invoice_due_days),
                paid_at=now if status == InvoiceStatus.PAID else None,
                freelancer_amount=freelancer_amount,
                platform_fee=platform_fee,
                idempotency_key=intent.idempotency_key,
            )
        )

        new_status = None
        if intent.invoice_type == InvoiceType.FINAL and status == InvoiceStatus.PAID:
            new_status = ProjectStatus.COMPLETED
        updated = uow.projects.patch(
            project.project_id,
            paid_to_date=project.paid_to_date + amount,
            status=new_status,
            expected_version=project.version,
        )

        if intent.invoice_type == InvoiceType.MANUAL:
            uow.tasks.patch(intent.task_id, invoice_paid=True)

        uow.intents.resolve(
            intent.idempotency_key,
            intent.attempt,
            IntentStatus.COMMITTED,
            resolved_at=now,
            invoice_number=invoice.invoice_number,
        )

        logger.info(
            "payment_written",
            extra={
                "project_id": project.project_id,
                "task_id": intent.task_id,
                "invoice_number": invoice.invoice_number,
                "invoice_type": intent.invoice_type.value,
                "amount": amount,
                "invoice_status": status.value,
                "paid_to_date": updated.paid_to_date,
            },
        )
        return invoice, updated
