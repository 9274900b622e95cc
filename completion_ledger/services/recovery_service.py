"""
RecoveryService -- reconciles payment intents left pending by a crash.

Responsibility:
    A payment writes its PaymentIntent (status ``pending``) and commits it
    BEFORE the payment transaction runs.  If the process dies or the
    caller is cancelled in between, the intent stays pending.  ``sweep``
    visits every pending intent and settles it one way or the other:

        invoice exists, paid_to_date covers it     -> CONFIRMED   (committed)
        invoice exists, paid_to_date short, fits   -> BUDGET_APPLIED (committed)
        invoice exists, paid_to_date short, over   -> VOIDED      (rolled_back)
        no invoice, still eligible and in budget   -> ROLLED_FORWARD (committed)
        no invoice, no longer eligible             -> ROLLED_BACK (rolled_back)

    Running the sweep twice changes nothing the second time.

Architecture position:
    Ledger > Services.  Uses the same PaymentWriter as the orchestrator, so
    a rolled-forward payment looks exactly like one that never crashed.
    Holds the project lock while reconciling (re-entrant, so the
    orchestrator may call ``reconcile`` while it already holds it).

Audit relevance:
    Every action is logged as ``intent_reconciled`` with the action taken.
    scripts/ledger_recover.py runs the sweep from the command line.
"""

from dataclasses import dataclass, field
from enum import Enum

from completion_ledger.db.types import ZERO
from completion_ledger.domain.clock import Clock, SystemClock
from completion_ledger.domain.dtos import InvoiceRecord, PaymentIntentRecord
from completion_ledger.domain.eligibility import (
    LedgerSnapshot,
    check_final,
    check_manual,
    check_upfront,
    payment_amount,
)
from completion_ledger.domain.events import EventSink, emit_safely, payment_events
from completion_ledger.domain.policy import DEFAULT_POLICY, PaymentPolicy
from completion_ledger.domain.values import (
    IntentStatus,
    InvoiceStatus,
    InvoiceType,
    ProjectStatus,
)
from completion_ledger.logging_config import LogContext, get_logger
from completion_ledger.services.eligibility_gate import EligibilityGate
from completion_ledger.services.integrity_validator import check_amount
from completion_ledger.services.payment_writer import PaymentWriter
from completion_ledger.services.project_locks import ProjectLockRegistry
from completion_ledger.stores.base import LedgerUnitOfWork, UnitOfWorkFactory

logger = get_logger("services.recovery")


class RecoveryActionKind(str, Enum):
    CONFIRMED = "confirmed"
    BUDGET_APPLIED = "budget_applied"
    VOIDED = "voided"
    ROLLED_FORWARD = "rolled_forward"
    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RecoveryAction:
    idempotency_key: str
    attempt: int
    project_id: str
    kind: RecoveryActionKind
    invoice_number: str | None = None
    detail: str = ""


@dataclass(frozen=True)
class RecoveryReport:
    actions: tuple[RecoveryAction, ...] = field(default_factory=tuple)

    @property
    def examined(self) -> int:
        return len(self.actions)

    def count(self, kind: RecoveryActionKind) -> int:
        return sum(1 for action in self.actions if action.kind == kind)


def _decide(intent: PaymentIntentRecord, snapshot: LedgerSnapshot | None):
    if intent.invoice_type == InvoiceType.UPFRONT:
        return check_upfront(intent.project_id, snapshot)
    if intent.invoice_type == InvoiceType.MANUAL:
        return check_manual(intent.project_id, intent.task_id, snapshot)
    return check_final(intent.project_id, snapshot)


class RecoveryService:
    def __init__(
        self,
        unit_of_work_factory: UnitOfWorkFactory,
        clock: Clock | None = None,
        policy: PaymentPolicy | None = None,
        event_sink: EventSink | None = None,
        lock_registry: ProjectLockRegistry | None = None,
        two_phase_final: bool = False,
    ):
        self._uow_factory = unit_of_work_factory
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY
        self._events = event_sink
        self._locks = lock_registry or ProjectLockRegistry()
        self._writer = PaymentWriter(self._clock, self._policy, two_phase_final)

    def sweep(self) -> RecoveryReport:
        with self._uow_factory() as uow:
            pending = uow.intents.list_pending()

        actions = [self.reconcile(intent) for intent in pending]
        report = RecoveryReport(tuple(actions))
        logger.info(
            "recovery_sweep_completed",
            extra={
                "examined": report.examined,
                **{kind.value: report.count(kind) for kind in RecoveryActionKind},
            },
        )
        return report

    def reconcile(self, intent: PaymentIntentRecord) -> RecoveryAction:
        with LogContext.bind(
            project_id=intent.project_id,
            task_id=intent.task_id,
            idempotency_key=intent.idempotency_key,
        ):
            with self._locks.hold(intent.project_id):
                action, events = self._reconcile_locked(intent)

            logger.info(
                "intent_reconciled",
                extra={
                    "attempt": intent.attempt,
                    "action": action.kind.value,
                    "invoice_number": action.invoice_number,
                    "detail": action.detail,
                },
            )
            for event_type, payload in events:
                emit_safely(self._events, event_type, payload)
            return action

    def _reconcile_locked(self, intent: PaymentIntentRecord):
        with self._uow_factory() as uow:
            current = next(
                (
                    i for i in uow.intents.list_for_key(intent.idempotency_key)
                    if i.attempt == intent.attempt
                ),
                None,
            )
            if current is None or current.status != IntentStatus.PENDING:
                return self._action(intent, RecoveryActionKind.SKIPPED, detail="already resolved"), []

            snapshot = EligibilityGate(uow.projects, uow.tasks, uow.invoices).snapshot(
                intent.project_id, for_update=True
            )
            live = [
                inv for inv in uow.invoices.find_by_idempotency_key(intent.idempotency_key)
                if inv.is_live
            ]

            if snapshot is None:
                self._resolve(uow, intent, IntentStatus.ROLLED_BACK, detail="project not found")
                uow.commit()
                return self._action(intent, RecoveryActionKind.ROLLED_BACK, detail="project not found"), []

            if live:
                result = self._reconcile_existing(uow, intent, snapshot, live[0])
            else:
                result = self._reconcile_missing(uow, intent, snapshot)
            uow.commit()
            return result

    def _reconcile_existing(
        self,
        uow: LedgerUnitOfWork,
        intent: PaymentIntentRecord,
        snapshot: LedgerSnapshot,
        invoice: InvoiceRecord,
    ):
        project = snapshot.project
        shortfall = snapshot.committed_sum() - project.paid_to_date

        if shortfall <= ZERO:
            self._flag_task(uow, intent)
            self._resolve(uow, intent, IntentStatus.COMMITTED, invoice.invoice_number)
            return self._action(intent, RecoveryActionKind.CONFIRMED, invoice.invoice_number), []

        others = LedgerSnapshot(
            project=project,
            tasks=snapshot.tasks,
            invoices=tuple(
                inv for inv in snapshot.invoices if inv.invoice_number != invoice.invoice_number
            ),
        )
        integrity = check_amount(others, invoice.total_amount, invoice.invoice_type)
        if integrity.is_valid:
            completes = (
                invoice.invoice_type == InvoiceType.FINAL
                and invoice.status == InvoiceStatus.PAID
            )
            updated = uow.projects.patch(
                project.project_id,
                paid_to_date=project.paid_to_date + min(shortfall, invoice.total_amount),
                status=ProjectStatus.COMPLETED if completes else None,
                expected_version=project.version,
            )
            self._flag_task(uow, intent)
            self._resolve(uow, intent, IntentStatus.COMMITTED, invoice.invoice_number)
            return (
                self._action(intent, RecoveryActionKind.BUDGET_APPLIED, invoice.invoice_number),
                payment_events(updated, invoice),
            )

        uow.invoices.update_status(invoice.invoice_number, InvoiceStatus.VOID)
        if intent.invoice_type == InvoiceType.MANUAL:
            uow.tasks.patch(intent.task_id, invoice_paid=False)
        detail = "; ".join(integrity.errors)
        self._resolve(uow, intent, IntentStatus.ROLLED_BACK, invoice.invoice_number, detail)
        logger.error(
            "budget_integrity_violation",
            extra={"invoice_number": invoice.invoice_number, "detail": detail},
        )
        return self._action(intent, RecoveryActionKind.VOIDED, invoice.invoice_number, detail), []

    def _reconcile_missing(
        self,
        uow: LedgerUnitOfWork,
        intent: PaymentIntentRecord,
        snapshot: LedgerSnapshot,
    ):
        decision = _decide(intent, snapshot)
        if not decision.allowed:
            detail = f"{decision.code.value}: {decision.reason}"
            self._resolve(uow, intent, IntentStatus.ROLLED_BACK, detail=detail)
            return self._action(intent, RecoveryActionKind.ROLLED_BACK, detail=detail), []

        amount = payment_amount(intent.invoice_type, snapshot)
        integrity = check_amount(snapshot, amount, intent.invoice_type)
        if not integrity.is_valid:
            detail = "; ".join(integrity.errors)
            self._resolve(uow, intent, IntentStatus.ROLLED_BACK, detail=detail)
            return self._action(intent, RecoveryActionKind.ROLLED_BACK, detail=detail), []

        invoice, updated = self._writer.apply(uow, snapshot, intent, amount)
        return (
            self._action(intent, RecoveryActionKind.ROLLED_FORWARD, invoice.invoice_number),
            payment_events(updated, invoice),
        )

    @staticmethod
    def _flag_task(uow: LedgerUnitOfWork, intent: PaymentIntentRecord) -> None:
        if intent.invoice_type == InvoiceType.MANUAL:
            task = uow.tasks.get(intent.task_id)
            if task is not None and not task.invoice_paid:
                uow.tasks.patch(intent.task_id, invoice_paid=True)

    def _resolve(
        self,
        uow: LedgerUnitOfWork,
        intent: PaymentIntentRecord,
        status: IntentStatus,
        invoice_number: str | None = None,
        detail: str | None = None,
    ) -> None:
        uow.intents.resolve(
            intent.idempotency_key,
            intent.attempt,
            status,
            resolved_at=self._clock.now(),
            invoice_number=invoice_number,
            detail=detail,
        )

    @staticmethod
    def _action(
        intent: PaymentIntentRecord,
        kind: RecoveryActionKind,
        invoice_number: str | None = None,
        detail: str = "",
    ) -> RecoveryAction:
        return RecoveryAction(
            idempotency_key=intent.idempotency_key,
            attempt=intent.attempt,
            project_id=intent.project_id,
            kind=kind,
            invoice_number=invoice_number,
            detail=detail,
        )
