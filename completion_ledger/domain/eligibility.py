"""
Eligibility rules -- may this payment action proceed right now?

Responsibility:
    Pure decision functions for the three payment actions (upfront, manual,
    final) over a LedgerSnapshot: the project, ALL its tasks and ALL its
    invoices as read in one pass.  Each rejection is an EligibilityDecision
    value with a machine-readable code, a human-readable reason and a
    payload; rejections are never raised.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.  The store-reading
    shell is services/eligibility_gate.py, which builds a fresh snapshot on
    every call.

Invariants enforced:
    - SINGLE_UPFRONT, SINGLE_MANUAL_PER_TASK, SINGLE_FINAL (decision side;
      the invoice table's partial unique indexes are the storage side).
    - "All tasks approved" is derived from the snapshot on every check,
      never stored: approved == total and total > 0.
    - NOT_ALL_TASKS_APPROVED is evaluated before NO_REMAINING_BUDGET, so an
      unfinished project is always reported as unfinished.

Check order per action (first failing check wins):
    common  PROJECT_NOT_FOUND, NOT_COMPLETION_PROJECT
    upfront UPFRONT_ALREADY_PAID, PROJECT_NOT_PAYABLE
    manual  TASK_NOT_FOUND, TASK_ALREADY_INVOICED, PROJECT_NOT_PAYABLE,
            TASK_NOT_APPROVED, NO_REMAINING_BUDGET
    final   FINAL_ALREADY_PROCESSED, PROJECT_NOT_PAYABLE,
            NOT_ALL_TASKS_APPROVED, NO_REMAINING_BUDGET
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from completion_ledger.db.types import ZERO
from completion_ledger.domain.budget import (
    payable_manual_amount,
    remaining_budget,
    upfront_amount,
)
from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord, TaskRecord
from completion_ledger.domain.values import (
    TASK_PAYABLE_STATUSES,
    UPFRONT_PAYABLE_STATUSES,
    InvoiceType,
)


class RejectionCode(str, Enum):
    """Why a payment action may not proceed."""

    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    NOT_COMPLETION_PROJECT = "NOT_COMPLETION_PROJECT"
    PROJECT_NOT_PAYABLE = "PROJECT_NOT_PAYABLE"
    UPFRONT_ALREADY_PAID = "UPFRONT_ALREADY_PAID"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    TASK_ALREADY_INVOICED = "TASK_ALREADY_INVOICED"
    TASK_NOT_APPROVED = "TASK_NOT_APPROVED"
    FINAL_ALREADY_PROCESSED = "FINAL_ALREADY_PROCESSED"
    NOT_ALL_TASKS_APPROVED = "NOT_ALL_TASKS_APPROVED"
    NO_REMAINING_BUDGET = "NO_REMAINING_BUDGET"


# The rejection that means "this exact action already happened"
REPLAY_CODES: dict[InvoiceType, RejectionCode] = {
    InvoiceType.UPFRONT: RejectionCode.UPFRONT_ALREADY_PAID,
    InvoiceType.MANUAL: RejectionCode.TASK_ALREADY_INVOICED,
    InvoiceType.FINAL: RejectionCode.FINAL_ALREADY_PROCESSED,
}


class PaymentPhase(str, Enum):
    """Derived lifecycle phase of a completion project's payments."""

    NO_PAYMENTS_YET = "no_payments_yet"
    UPFRONT_PAID = "upfront_paid"
    TASKS_IN_PROGRESS = "tasks_in_progress"
    ALL_TASKS_APPROVED = "all_tasks_approved"
    FINAL_PAID = "final_paid"


@dataclass(frozen=True)
class LedgerSnapshot:
    """One consistent read of a project, its tasks and its invoices."""

    project: ProjectRecord
    tasks: tuple[TaskRecord, ...] = ()
    invoices: tuple[InvoiceRecord, ...] = ()

    @property
    def live_invoices(self) -> tuple[InvoiceRecord, ...]:
        return tuple(inv for inv in self.invoices if inv.is_live)

    def live_of_type(self, invoice_type: InvoiceType) -> tuple[InvoiceRecord, ...]:
        return tuple(
            inv for inv in self.live_invoices if inv.invoice_type == invoice_type
        )

    def committed_sum(self, invoice_type: InvoiceType | None = None) -> Decimal:
        invoices = (
            self.live_invoices if invoice_type is None else self.live_of_type(invoice_type)
        )
        return sum((inv.total_amount for inv in invoices), ZERO)

    def task(self, task_id: str) -> TaskRecord | None:
        for task in self.tasks:
            if task.task_id == task_id:
                return task
        return None

    def live_invoice_for_task(self, task_id: str) -> InvoiceRecord | None:
        for inv in self.live_invoices:
            if inv.task_id == task_id:
                return inv
        return None

    @property
    def upfront_invoice(self) -> InvoiceRecord | None:
        live = self.live_of_type(InvoiceType.UPFRONT)
        return live[0] if live else None

    @property
    def final_invoice(self) -> InvoiceRecord | None:
        live = self.live_of_type(InvoiceType.FINAL)
        return live[0] if live else None

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def approved_tasks(self) -> int:
        return sum(1 for task in self.tasks if task.is_approved)

    @property
    def all_tasks_approved(self) -> bool:
        return self.total_tasks > 0 and self.approved_tasks == self.total_tasks

    @property
    def manual_sum(self) -> Decimal:
        return self.committed_sum(InvoiceType.MANUAL)

    @property
    def final_remaining(self) -> Decimal:
        """Pool left for the final payout."""
        return remaining_budget(self.project.total_budget, self.manual_sum)

    @property
    def phase(self) -> PaymentPhase:
        if self.final_invoice is not None:
            return PaymentPhase.FINAL_PAID
        if self.all_tasks_approved:
            return PaymentPhase.ALL_TASKS_APPROVED
        if self.live_of_type(InvoiceType.MANUAL):
            return PaymentPhase.TASKS_IN_PROGRESS
        if self.upfront_invoice is not None:
            return PaymentPhase.UPFRONT_PAID
        return PaymentPhase.NO_PAYMENTS_YET


@dataclass(frozen=True)
class EligibilityDecision:
    """
    Result of one eligibility check.

    ``code`` is None when the action is allowed.  ``existing_invoice`` is
    set on replay rejections (the invoice that already satisfies the
    action).  ``snapshot`` is the state the decision was made on.
    """

    action: InvoiceType
    project_id: str
    allowed: bool
    code: RejectionCode | None = None
    reason: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    existing_invoice: InvoiceRecord | None = None
    task_id: str | None = None
    snapshot: LedgerSnapshot | None = field(default=None, repr=False, compare=False)

    def __bool__(self) -> bool:
        return self.allowed

    @property
    def is_replay(self) -> bool:
        """
        The action was already carried out (idempotent repeat).

        Only when the invoice that carried it out is at hand: a task flagged
        paid without a live invoice is a plain rejection.
        """
        return (
            self.code is not None
            and REPLAY_CODES[self.action] == self.code
            and self.existing_invoice is not None
        )


def _allow(action, snapshot, task_id=None) -> EligibilityDecision:
    return EligibilityDecision(
        action=action,
        project_id=snapshot.project.project_id,
        allowed=True,
        reason="eligible",
        task_id=task_id,
        snapshot=snapshot,
    )


def _reject(
    action: InvoiceType,
    project_id: str,
    code: RejectionCode,
    reason: str,
    *,
    snapshot: LedgerSnapshot | None = None,
    task_id: str | None = None,
    existing_invoice: InvoiceRecord | None = None,
    **payload: Any,
) -> EligibilityDecision:
    return EligibilityDecision(
        action=action,
        project_id=project_id,
        allowed=False,
        code=code,
        reason=reason,
        payload=payload,
        existing_invoice=existing_invoice,
        task_id=task_id,
        snapshot=snapshot,
    )


def _check_common(
    action: InvoiceType,
    project_id: str,
    snapshot: LedgerSnapshot | None,
    task_id: str | None = None,
) -> EligibilityDecision | None:
    if snapshot is None:
        return _reject(
            action, project_id, RejectionCode.PROJECT_NOT_FOUND,
            f"Project {project_id} not found",
            task_id=task_id,
        )
    project = snapshot.project
    if not project.is_completion:
        return _reject(
            action, project_id, RejectionCode.NOT_COMPLETION_PROJECT,
            f"Project {project_id} is invoiced by "
            f"{project.invoicing_method.value}, not completion",
            snapshot=snapshot, task_id=task_id,
            invoicing_method=project.invoicing_method.value,
        )
    return None


def check_upfront(project_id: str, snapshot: LedgerSnapshot | None) -> EligibilityDecision:
    """May the 12% upfront payment be issued?"""
    action = InvoiceType.UPFRONT
    rejection = _check_common(action, project_id, snapshot)
    if rejection is not None:
        return rejection

    existing = snapshot.upfront_invoice
    if existing is not None:
        return _reject(
            action, project_id, RejectionCode.UPFRONT_ALREADY_PAID,
            f"Upfront payment already issued as {existing.invoice_number}",
            snapshot=snapshot, existing_invoice=existing,
        )

    status = snapshot.project.status
    if status not in UPFRONT_PAYABLE_STATUSES:
        return _reject(
            action, project_id, RejectionCode.PROJECT_NOT_PAYABLE,
            f"Upfront payment not allowed while project is {status.value}",
            snapshot=snapshot, status=status.value,
        )
    return _allow(action, snapshot)


def check_manual(
    project_id: str,
    task_id: str,
    snapshot: LedgerSnapshot | None,
) -> EligibilityDecision:
    """May a manual invoice be issued for this approved task?"""
    action = InvoiceType.MANUAL
    rejection = _check_common(action, project_id, snapshot, task_id)
    if rejection is not None:
        return rejection

    task = snapshot.task(task_id)
    if task is None:
        return _reject(
            action, project_id, RejectionCode.TASK_NOT_FOUND,
            f"Task {task_id} not found in project {project_id}",
            snapshot=snapshot, task_id=task_id,
        )

    existing = snapshot.live_invoice_for_task(task_id)
    if task.invoice_paid or existing is not None:
        label = existing.invoice_number if existing else "a previous payment"
        return _reject(
            action, project_id, RejectionCode.TASK_ALREADY_INVOICED,
            f"Task {task_id} already invoiced by {label}",
            snapshot=snapshot, task_id=task_id, existing_invoice=existing,
        )

    status = snapshot.project.status
    if status not in TASK_PAYABLE_STATUSES:
        return _reject(
            action, project_id, RejectionCode.PROJECT_NOT_PAYABLE,
            f"Task payments not allowed while project is {status.value}",
            snapshot=snapshot, task_id=task_id, status=status.value,
        )

    if not task.is_approved:
        return _reject(
            action, project_id, RejectionCode.TASK_NOT_APPROVED,
            f"Task {task_id} is {task.status.value}, not Approved",
            snapshot=snapshot, task_id=task_id, task_status=task.status.value,
        )

    payable = manual_amount_for(snapshot)
    if payable <= 0:
        return _reject(
            action, project_id, RejectionCode.NO_REMAINING_BUDGET,
            "Task pool is exhausted",
            snapshot=snapshot, task_id=task_id,
            remaining_budget=pool_remaining(snapshot),
        )
    return _allow(action, snapshot, task_id)


def check_final(project_id: str, snapshot: LedgerSnapshot | None) -> EligibilityDecision:
    """May the final payout be issued?"""
    action = InvoiceType.FINAL
    rejection = _check_common(action, project_id, snapshot)
    if rejection is not None:
        return rejection

    existing = snapshot.final_invoice
    if existing is not None:
        return _reject(
            action, project_id, RejectionCode.FINAL_ALREADY_PROCESSED,
            f"Final payment already processed as {existing.invoice_number}",
            snapshot=snapshot, existing_invoice=existing,
        )

    status = snapshot.project.status
    if status not in TASK_PAYABLE_STATUSES:
        return _reject(
            action, project_id, RejectionCode.PROJECT_NOT_PAYABLE,
            f"Final payment not allowed while project is {status.value}",
            snapshot=snapshot, status=status.value,
        )

    approved, total = snapshot.approved_tasks, snapshot.total_tasks
    if not snapshot.all_tasks_approved:
        return _reject(
            action, project_id, RejectionCode.NOT_ALL_TASKS_APPROVED,
            f"Not all tasks approved ({approved}/{total})",
            snapshot=snapshot, approved=approved, total=total,
        )

    remaining = snapshot.final_remaining
    if remaining <= 0:
        return _reject(
            action, project_id, RejectionCode.NO_REMAINING_BUDGET,
            f"No remaining budget for final payment ({remaining})",
            snapshot=snapshot, remaining_budget=remaining,
        )
    return _allow(action, snapshot)


def pool_remaining(snapshot: LedgerSnapshot) -> Decimal:
    """Pool left after every live manual AND final invoice."""
    return remaining_budget(
        snapshot.project.total_budget,
        snapshot.manual_sum + snapshot.committed_sum(InvoiceType.FINAL),
    )


def manual_amount_for(snapshot: LedgerSnapshot) -> Decimal:
    """Amount the next manual invoice of this project would carry."""
    return payable_manual_amount(
        snapshot.project.total_budget,
        max(snapshot.total_tasks, 1),
        snapshot.manual_sum + snapshot.committed_sum(InvoiceType.FINAL),
    )


@dataclass(frozen=True)
class FinalPayoutStatus:
    """Readiness of a project for its final payout."""

    project_id: str
    is_ready: bool
    all_tasks_approved: bool
    remaining_budget: Decimal
    approved_tasks: int
    total_tasks: int
    final_already_processed: bool
    phase: PaymentPhase | None
    reason: str


def final_payout_status(project_id: str, snapshot: LedgerSnapshot | None) -> FinalPayoutStatus:
    """Summarize final-payout readiness, with the gate's reason when not ready."""
    decision = check_final(project_id, snapshot)
    if snapshot is None:
        return FinalPayoutStatus(
            project_id=project_id,
            is_ready=False,
            all_tasks_approved=False,
            remaining_budget=ZERO,
            approved_tasks=0,
            total_tasks=0,
            final_already_processed=False,
            phase=None,
            reason=decision.reason,
        )
    if snapshot.project.is_completion:
        remaining = snapshot.final_remaining
    else:
        remaining = ZERO
    return FinalPayoutStatus(
        project_id=project_id,
        is_ready=decision.allowed,
        all_tasks_approved=snapshot.all_tasks_approved,
        remaining_budget=remaining,
        approved_tasks=snapshot.approved_tasks,
        total_tasks=snapshot.total_tasks,
        final_already_processed=snapshot.final_invoice is not None,
        phase=snapshot.phase,
        reason=decision.reason,
    )


def payment_amount(action: InvoiceType, snapshot: LedgerSnapshot) -> Decimal:
    """Amount the given payment action would carry against ``snapshot``."""
    action = InvoiceType(action)
    if action == InvoiceType.UPFRONT:
        return upfront_amount(snapshot.project.total_budget)
    if action == InvoiceType.MANUAL:
        return manual_amount_for(snapshot)
    return snapshot.final_remaining
