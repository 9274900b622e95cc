"""
SettlementService -- moves a processing invoice to paid through the gateway.

Responsibility:
    With a gateway configured, the final payout is written as a
    ``processing`` invoice (budget already deducted) and settled here:

        1. under the project lock, claim the invoice: paid ->
           ALREADY_PROCESSED, not processing -> InvoiceNotSettleableError,
           claimed by another caller -> PENDING_SETTLEMENT
        2. call the gateway with NO lock held
        3. success: under the project lock, mark the invoice paid, stamp the
           transaction id and complete the project; then emit events
        4. failure: release the claim, leave the invoice processing, emit
           completion.final_settlement_failed, return PENDING_SETTLEMENT

    Settlement can be retried any number of times by invoice number.  Only
    the claim holder calls the gateway.  A claim left behind by a crash
    expires after ``settlement_claim_seconds``; the gateway is expected to
    treat the invoice number as its own idempotency key for that case.

Architecture position:
    Ledger > Services.  Called by PaymentOrchestrator after a final payment
    commits, and directly by operators retrying a failed settlement.
"""

from datetime import timedelta

from completion_ledger.domain.clock import Clock, SystemClock
from completion_ledger.domain.dtos import InvoiceRecord
from completion_ledger.domain.events import (
    FINAL_SETTLEMENT_FAILED,
    EventSink,
    build_payment_payload,
    emit_safely,
    payment_events,
)
from completion_ledger.domain.gateway import PaymentGateway
from completion_ledger.domain.policy import DEFAULT_POLICY, PaymentPolicy
from completion_ledger.domain.values import InvoiceStatus, InvoiceType, ProjectStatus
from completion_ledger.exceptions import (
    InvoiceNotFoundError,
    InvoiceNotSettleableError,
    ProjectNotFoundError,
)
from completion_ledger.logging_config import LogContext, get_logger
from completion_ledger.services.outcomes import PaymentOutcome, PaymentStatus
from completion_ledger.services.project_locks import ProjectLockRegistry
from completion_ledger.stores.base import UnitOfWorkFactory

logger = get_logger("services.settlement")


class SettlementService:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        clock: Clock | None = None,
        event_sink: EventSink | None = None,
        lock_registry: ProjectLockRegistry | None = None,
        policy: PaymentPolicy | None = None,
    ):
        self._uow_factory = unit_of_work_factory
        self._gateway = gateway
        self._clock = clock or SystemClock()
        self._events = event_sink
        self._locks = lock_registry or ProjectLockRegistry()
        self._claim_ttl = timedelta(
            seconds=(policy or DEFAULT_POLICY).settlement_claim_seconds
        )

    def settle(self, invoice_number: str) -> PaymentOutcome:
        with LogContext.bind(invoice_number=invoice_number):
            claimed = self._claim(invoice_number)
            if isinstance(claimed, PaymentOutcome):
                return claimed
            invoice, project = claimed
            with LogContext.bind(project_id=invoice.project_id):
                logger.info(
                    "settlement_started",
                    extra={"amount": invoice.total_amount},
                )
                try:
                    result = self._gateway.execute(invoice_number, invoice.total_amount)
                except Exception:
                    self._release(invoice)
                    raise

                if not result.success:
                    self._release(invoice)
                    logger.warning(
                        "settlement_failed",
                        extra={"amount": invoice.total_amount, "detail": result.message},
                    )
                    payload = build_payment_payload(project, invoice)
                    payload["message"] = result.message
                    emit_safely(self._events, FINAL_SETTLEMENT_FAILED, payload)
                    return self._outcome(
                        PaymentStatus.PENDING_SETTLEMENT,
                        invoice,
                        reason=result.message or "Gateway declined the payment",
                    )

                return self._mark_paid(invoice, result.transaction_id)

    def _claim(self, invoice_number: str):
        """
        Take the invoice for one gateway call.

        Returns (invoice, project) when this caller holds the claim, or the
        outcome to report when it must not call the gateway.
        """
        with self._uow_factory() as uow:
            invoice = uow.invoices.get(invoice_number)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_number)

        with self._locks.hold(invoice.project_id):
            with self._uow_factory() as uow:
                project = uow.projects.read(invoice.project_id, for_update=True)
                if project is None:
                    raise ProjectNotFoundError(invoice.project_id)
                invoice = uow.invoices.get(invoice_number)
                if invoice.status == InvoiceStatus.PAID:
                    return self._outcome(PaymentStatus.ALREADY_PROCESSED, invoice)
                if invoice.status != InvoiceStatus.PROCESSING:
                    raise InvoiceNotSettleableError(invoice_number, invoice.status.value)

                now = self._clock.now()
                if (
                    invoice.settlement_claimed_at is not None
                    and now - invoice.settlement_claimed_at < self._claim_ttl
                ):
                    logger.info(
                        "settlement_in_progress",
                        extra={"claimed_at": invoice.settlement_claimed_at},
                    )
                    return self._outcome(
                        PaymentStatus.PENDING_SETTLEMENT,
                        invoice,
                        reason="Settlement already in progress",
                    )

                invoice = uow.invoices.set_settlement_claim(invoice_number, now)
                uow.commit()
                return invoice, project

    def _release(self, invoice: InvoiceRecord) -> None:
        with self._locks.hold(invoice.project_id):
            with self._uow_factory() as uow:
                uow.invoices.set_settlement_claim(invoice.invoice_number, None)
                uow.commit()

    def _mark_paid(self, invoice: InvoiceRecord, transaction_id: str | None) -> PaymentOutcome:
        with self._locks.hold(invoice.project_id):
            with self._uow_factory() as uow:
                current = uow.invoices.get(invoice.invoice_number)
                if current.status == InvoiceStatus.PAID:
                    logger.info("settlement_already_recorded")
                    return self._outcome(PaymentStatus.ALREADY_PROCESSED, current)
                if current.status != InvoiceStatus.PROCESSING:
                    raise InvoiceNotSettleableError(current.invoice_number, current.status.value)

                project = uow.projects.read(invoice.project_id, for_update=True)
                paid = uow.invoices.update_status(
                    invoice.invoice_number,
                    InvoiceStatus.PAID,
                    paid_at=self._clock.now(),
                    transaction_id=transaction_id,
                )
                if paid.invoice_type == InvoiceType.FINAL:
                    project = uow.projects.patch(
                        invoice.project_id, status=ProjectStatus.COMPLETED
                    )
                uow.commit()

        logger.info(
            "settlement_completed",
            extra={"amount": paid.total_amount, "transaction_id": transaction_id},
        )
        for event_type, payload in payment_events(project, paid):
            emit_safely(self._events, event_type, payload)
        return self._outcome(PaymentStatus.PAID, paid)

    @staticmethod
    def _outcome(status: PaymentStatus, invoice: InvoiceRecord, reason: str = "") -> PaymentOutcome:
        return PaymentOutcome(
            status=status,
            action=invoice.invoice_type,
            project_id=invoice.project_id,
            task_id=invoice.task_id,
            idempotency_key=invoice.idempotency_key,
            invoice=invoice,
            amount=invoice.total_amount,
            reason=reason,
        )
