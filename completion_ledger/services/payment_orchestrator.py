"""
PaymentOrchestrator -- the single entry point for completion payments.

Responsibility:
    Runs the three payment actions (upfront, manual per task, final) plus
    close-out end to end:

        1. under the project lock: reconcile any pending intent for the key
        2. gate (fresh read); replays -> ALREADY_PROCESSED, else REJECTED
        3. amount from the budget calculator
        4. independent integrity check -> INTEGRITY_FAILED
        5. write-ahead PaymentIntent, committed on its own
        6. one transaction: gate re-check FOR UPDATE, invoice, paid_to_date,
           task flag, intent committed
        7. lock released; events emitted; a processing final is settled
           through the gateway

Architecture position:
    Ledger > Services.  Composes EligibilityGate, the integrity check,
    PaymentWriter, RecoveryService and SettlementService over a
    UnitOfWorkFactory.  Hosts call this; nothing below calls back up.

Invariants enforced:
    - AT_MOST_ONCE: per-project lock, row lock + version column, partial
      unique invoice indexes and the idempotency key.  A caller losing a
      race re-runs from the gate and returns the winner's invoice.
    - BUDGET_CONSERVATION: gate + integrity check before every write, and
      again inside the write transaction.
    - Events are emitted only after the payment transaction commits.

Failure modes:
    - StorageError on a read: retried up to ``max_read_retries``.
    - OptimisticLockError / DuplicateInvoiceError / DuplicateIntentError:
      intent rolled back, full re-run from the gate, at most
      ``max_conflict_retries`` times, then ConflictRetriesExhaustedError.
    - Anything else after the intent commits leaves it pending for
      RecoveryService.

Audit relevance:
    payment_started / payment_completed / payment_rejected /
    budget_integrity_violation log lines carry the idempotency key, the
    project and task ids and the invoice number.
"""

from decimal import Decimal

from completion_ledger.domain.clock import Clock, SystemClock
from completion_ledger.domain.dtos import InvoiceRecord, PaymentIntentRecord, ProjectRecord
from completion_ledger.domain.eligibility import (
    EligibilityDecision,
    LedgerSnapshot,
    RejectionCode,
    payment_amount,
)
from completion_ledger.domain.events import (
    PROJECT_COMPLETED,
    EventSink,
    build_completion_payload,
    emit_safely,
    payment_events,
)
from completion_ledger.domain.gateway import PaymentGateway
from completion_ledger.domain.policy import DEFAULT_POLICY, PaymentPolicy
from completion_ledger.domain.values import (
    IntentStatus,
    InvoiceStatus,
    InvoiceType,
    ProjectStatus,
)
from completion_ledger.exceptions import (
    ConcurrencyError,
    ConflictRetriesExhaustedError,
    OptimisticLockError,
    StorageError,
)
from completion_ledger.logging_config import LogContext, get_logger
from completion_ledger.services.eligibility_gate import EligibilityGate
from completion_ledger.services.integrity_validator import (
    BUDGET_INTEGRITY_VIOLATION,
    check_amount,
)
from completion_ledger.services.outcomes import PaymentOutcome, PaymentStatus
from completion_ledger.services.payment_writer import PaymentWriter
from completion_ledger.services.project_locks import ProjectLockRegistry
from completion_ledger.services.recovery_service import RecoveryService
from completion_ledger.services.settlement_service import SettlementService
from completion_ledger.stores.base import UnitOfWorkFactory
from completion_ledger.utils.idempotency import generate_idempotency_key

logger = get_logger("services.payment_orchestrator")


class PaymentOrchestrator:
    """
    Executes completion payments.

    Contract:
        Every entry point returns a PaymentOutcome.  Business rejections
        are outcomes; only infrastructure failures and exhausted conflict
        retries are raised.

    Thread safety:
        Safe to share across threads.  Each attempt opens its own unit of
        work; same-project calls serialize on ``lock_registry``.
    """

    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        event_sink: EventSink | None = None,
        gateway: PaymentGateway | None = None,
        clock: Clock | None = None,
        policy: PaymentPolicy | None = None,
        lock_registry: ProjectLockRegistry | None = None,
    ):
        self._uow_factory = unit_of_work_factory
        self._events = event_sink
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY
        self._locks = lock_registry or ProjectLockRegistry()

        two_phase_final = gateway is not None
        self._writer = PaymentWriter(self._clock, self._policy, two_phase_final)
        self._recovery = RecoveryService(
            unit_of_work_factory,
            clock=self._clock,
            policy=self._policy,
            event_sink=event_sink,
            lock_registry=self._locks,
            two_phase_final=two_phase_final,
        )
        self._settlement = (
            SettlementService(
                unit_of_work_factory,
                gateway,
                clock=self._clock,
                event_sink=event_sink,
                lock_registry=self._locks,
                policy=self._policy,
            )
            if gateway is not None
            else None
        )

    @property
    def lock_registry(self) -> ProjectLockRegistry:
        return self._locks

    @property
    def recovery(self) -> RecoveryService:
        return self._recovery

    @property
    def settlement(self) -> SettlementService | None:
        return self._settlement

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def pay_upfront(self, project_id: str) -> PaymentOutcome:
        """Issue the 12% upfront payment."""
        return self._execute(InvoiceType.UPFRONT, project_id)

    def pay_manual_for_task(self, project_id: str, task_id: str) -> PaymentOutcome:
        """Issue the manual invoice for one approved task."""
        return self._execute(InvoiceType.MANUAL, project_id, task_id)

    def pay_final(self, project_id: str) -> PaymentOutcome:
        """Pay out what is left of the task pool once every task is approved."""
        return self._execute(InvoiceType.FINAL, project_id)

    def close_out(self, project_id: str) -> PaymentOutcome:
        """
        Finish a project whose tasks are all approved.

        Pays the final payout when budget remains.  When the manual invoices
        already consumed the pool, marks the project completed without a
        payment (CLOSED).  A final payment left pending by a crash is
        reconciled first, so it is never overtaken by the close-out.
        """
        key = generate_idempotency_key(InvoiceType.FINAL, project_id)
        with LogContext.bind(project_id=project_id, idempotency_key=key):
            with self._locks.hold(project_id):
                self._reconcile_pending(key)
                with self._uow_factory() as uow:
                    gate = EligibilityGate(uow.projects, uow.tasks, uow.invoices)
                    decision = gate.check(InvoiceType.FINAL, project_id, for_update=True)
                    snapshot = decision.snapshot

                    if (
                        snapshot is not None
                        and snapshot.project.is_completion
                        and snapshot.project.status == ProjectStatus.COMPLETED
                    ):
                        return PaymentOutcome(
                            status=PaymentStatus.ALREADY_PROCESSED,
                            action=InvoiceType.FINAL,
                            project_id=project_id,
                            idempotency_key=key,
                            invoice=snapshot.final_invoice,
                            amount=snapshot.final_invoice.total_amount if snapshot.final_invoice else None,
                            reason="Project already completed",
                        )

                    if decision.code != RejectionCode.NO_REMAINING_BUDGET:
                        closed = None
                    else:
                        project = uow.projects.patch(
                            project_id,
                            status=ProjectStatus.COMPLETED,
                            expected_version=snapshot.project.version,
                        )
                        uow.commit()
                        closed = project

            if closed is None:
                if decision.allowed:
                    return self.pay_final(project_id)
                return self._rejected(decision, key)

            logger.info("project_closed_out", extra={"paid_to_date": closed.paid_to_date})
            emit_safely(self._events, PROJECT_COMPLETED, build_completion_payload(closed, None))
            return PaymentOutcome(
                status=PaymentStatus.CLOSED,
                action=InvoiceType.FINAL,
                project_id=project_id,
                idempotency_key=key,
                amount=Decimal("0.00"),
                reason="No remaining budget; project completed",
            )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(
        self,
        action: InvoiceType,
        project_id: str,
        task_id: str | None = None,
    ) -> PaymentOutcome:
        key = generate_idempotency_key(action, project_id, task_id)
        with LogContext.bind(project_id=project_id, task_id=task_id, idempotency_key=key):
            logger.info("payment_started", extra={"action": action.value})

            conflicts = 0
            while True:
                try:
                    with self._locks.hold(project_id):
                        outcome, project = self._attempt(action, project_id, task_id, key)
                    break
                except ConcurrencyError as exc:
                    conflicts += 1
                    logger.warning(
                        "payment_conflict_retry",
                        extra={"attempt": conflicts, "error_code": exc.code},
                    )
                    if conflicts > self._policy.max_conflict_retries:
                        logger.error("payment_conflict_retries_exhausted", extra={"attempts": conflicts})
                        raise ConflictRetriesExhaustedError(key, conflicts) from exc

            if outcome.status != PaymentStatus.PAID and outcome.status != PaymentStatus.PENDING_SETTLEMENT:
                return outcome

            for event_type, payload in payment_events(project, outcome.invoice):
                emit_safely(self._events, event_type, payload)

            if outcome.status == PaymentStatus.PENDING_SETTLEMENT and self._settlement is not None:
                settled = self._settlement.settle(outcome.invoice.invoice_number)
                outcome = PaymentOutcome(
                    status=(
                        PaymentStatus.PAID
                        if settled.status in (PaymentStatus.PAID, PaymentStatus.ALREADY_PROCESSED)
                        else PaymentStatus.PENDING_SETTLEMENT
                    ),
                    action=action,
                    project_id=project_id,
                    task_id=task_id,
                    idempotency_key=key,
                    invoice=settled.invoice,
                    amount=settled.amount,
                    reason=settled.reason,
                )

            logger.info(
                "payment_completed",
                extra={
                    "action": action.value,
                    "status": outcome.status.value,
                    "invoice_number": outcome.invoice_number,
                    "amount": outcome.amount,
                },
            )
            return outcome

    def _attempt(
        self,
        action: InvoiceType,
        project_id: str,
        task_id: str | None,
        key: str,
    ) -> tuple[PaymentOutcome, ProjectRecord | None]:
        """One pass from the gate to the commit.  Caller holds the project lock."""
        self._reconcile_pending(key)

        decision = self._read(
            lambda uow: EligibilityGate(uow.projects, uow.tasks, uow.invoices).check(
                action, project_id, task_id
            )
        )
        if not decision.allowed:
            return self._rejected(decision, key), None

        snapshot = decision.snapshot
        amount = payment_amount(action, snapshot)
        integrity = check_amount(snapshot, amount, action)
        if not integrity.is_valid:
            logger.error(
                "budget_integrity_violation",
                extra={
                    "action": action.value,
                    "amount": amount,
                    "remaining_budget": integrity.current_remaining_budget,
                    "errors": list(integrity.errors),
                },
            )
            return PaymentOutcome(
                status=PaymentStatus.INTEGRITY_FAILED,
                action=action,
                project_id=project_id,
                task_id=task_id,
                idempotency_key=key,
                amount=amount,
                code=BUDGET_INTEGRITY_VIOLATION,
                reason="; ".join(integrity.errors),
                errors=integrity.errors,
            ), None

        intent = self._open_intent(key, action, project_id, task_id, amount)
        try:
            invoice, project = self._commit_payment(action, project_id, task_id, intent, snapshot)
        except ConcurrencyError as exc:
            self._abandon_intent(intent, exc)
            raise

        status = (
            PaymentStatus.PENDING_SETTLEMENT
            if invoice.status == InvoiceStatus.PROCESSING
            else PaymentStatus.PAID
        )
        return PaymentOutcome(
            status=status,
            action=action,
            project_id=project_id,
            task_id=task_id,
            idempotency_key=key,
            invoice=invoice,
            amount=invoice.total_amount,
        ), project

    def _commit_payment(
        self,
        action: InvoiceType,
        project_id: str,
        task_id: str | None,
        intent: PaymentIntentRecord,
        checked: LedgerSnapshot,
    ) -> tuple[InvoiceRecord, ProjectRecord]:
        with self._uow_factory() as uow:
            gate = EligibilityGate(uow.projects, uow.tasks, uow.invoices)
            decision = gate.check(action, project_id, task_id, for_update=True)
            if (
                not decision.allowed
                or payment_amount(action, decision.snapshot) != intent.amount
            ):
                current = decision.snapshot.project.version if decision.snapshot else None
                raise OptimisticLockError(
                    "Project", project_id, checked.project.version, current
                )
            invoice, project = self._writer.apply(uow, decision.snapshot, intent)
            uow.commit()
            return invoice, project

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    def _reconcile_pending(self, key: str) -> None:
        pending = self._read(
            lambda uow: [
                intent for intent in uow.intents.list_for_key(key)
                if intent.status == IntentStatus.PENDING
            ]
        )
        for intent in pending:
            logger.warning("pending_intent_found", extra={"attempt": intent.attempt})
            self._recovery.reconcile(intent)

    def _open_intent(
        self,
        key: str,
        action: InvoiceType,
        project_id: str,
        task_id: str | None,
        amount: Decimal,
    ) -> PaymentIntentRecord:
        with self._uow_factory() as uow:
            attempts = uow.intents.list_for_key(key)
            intent = uow.intents.open(
                PaymentIntentRecord(
                    idempotency_key=key,
                    attempt=max((i.attempt for i in attempts), default=0) + 1,
                    project_id=project_id,
                    task_id=task_id,
                    invoice_type=action,
                    amount=amount,
                )
            )
            uow.commit()
        logger.info("payment_intent_opened", extra={"attempt": intent.attempt, "amount": amount})
        return intent

    def _abandon_intent(self, intent: PaymentIntentRecord, exc: Exception) -> None:
        with self._uow_factory() as uow:
            current = next(
                (i for i in uow.intents.list_for_key(intent.idempotency_key) if i.attempt == intent.attempt),
                None,
            )
            if current is None or current.status != IntentStatus.PENDING:
                return
            uow.intents.resolve(
                intent.idempotency_key,
                intent.attempt,
                IntentStatus.ROLLED_BACK,
                resolved_at=self._clock.now(),
                detail=str(exc),
            )
            uow.commit()
        logger.info("payment_intent_rolled_back", extra={"attempt": intent.attempt})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, fn):
        """Run an idempotent read in its own unit of work, retrying StorageError."""
        attempts = self._policy.max_read_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self._uow_factory() as uow:
                    return fn(uow)
            except StorageError as exc:
                if attempt == attempts:
                    raise
                logger.warning(
                    "read_retry",
                    extra={"attempt": attempt, "operation": exc.operation},
                )

    @staticmethod
    def _rejected(decision: EligibilityDecision, key: str) -> PaymentOutcome:
        outcome = PaymentOutcome.from_decision(decision, key)
        logger.info(
            "payment_rejected",
            extra={
                "action": decision.action.value,
                "status": outcome.status.value,
                "code": outcome.code,
                "reason": decision.reason,
                "invoice_number": outcome.invoice_number,
            },
        )
        return outcome
