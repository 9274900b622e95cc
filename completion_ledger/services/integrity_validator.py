"""
IntegrityValidator -- independent budget checks and the offline audit.

Responsibility:
    1. ``validate``: given a proposed amount, recompute the remaining budget
       from the stores, independently of whatever the caller computed, and
       reject anything that would go negative or break conservation.
    2. ``audit_project`` / ``audit_all``: sum committed invoices by type and
       compare them with the budget, paid_to_date, the accounting identity
       and the one-invoice-per-slot rules.  Every mismatch is a
       BUDGET_INTEGRITY_VIOLATION finding, logged at ERROR.

Architecture position:
    Ledger > Services.  Read-only.  Redundant with the eligibility gate on
    purpose: the gate decides whether this KIND of payment may happen now,
    the validator decides whether this specific AMOUNT fits.

Invariants enforced:
    BUDGET_CONSERVATION, ACCOUNTING_IDENTITY, SINGLE_UPFRONT,
    SINGLE_MANUAL_PER_TASK, SINGLE_FINAL, PAID_TO_DATE_MONOTONIC (audit side).

Audit relevance:
    scripts/ledger_audit.py runs ``audit_all`` and exits non-zero on any
    finding.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from completion_ledger.db.types import ROUNDING_TOLERANCE, ZERO, round_money
from completion_ledger.domain.budget import (
    remaining_budget,
    task_portion_budget,
    upfront_amount,
)
from completion_ledger.domain.eligibility import LedgerSnapshot
from completion_ledger.domain.values import InvoiceType, InvoicingMethod
from completion_ledger.logging_config import get_logger
from completion_ledger.services.eligibility_gate import EligibilityGate
from completion_ledger.stores.base import InvoiceStore, ProjectStore, TaskStore

logger = get_logger("services.integrity_validator")

BUDGET_INTEGRITY_VIOLATION = "BUDGET_INTEGRITY_VIOLATION"


@dataclass(frozen=True)
class BudgetIntegrityResult:
    """Outcome of checking one proposed amount."""

    is_valid: bool
    current_remaining_budget: Decimal
    would_result_in_negative: bool
    errors: tuple[str, ...] = ()


class FindingKind(str, Enum):
    OVER_BUDGET = "over_budget"
    POOL_OVERDRAWN = "pool_overdrawn"
    UPFRONT_AMOUNT_MISMATCH = "upfront_amount_mismatch"
    DUPLICATE_UPFRONT = "duplicate_upfront"
    DUPLICATE_FINAL = "duplicate_final"
    DUPLICATE_TASK_PAYMENT = "duplicate_task_payment"
    PAID_TO_DATE_MISMATCH = "paid_to_date_mismatch"
    IDENTITY_MISMATCH = "identity_mismatch"
    TASK_FLAG_MISMATCH = "task_flag_mismatch"


@dataclass(frozen=True)
class IntegrityFinding:
    kind: FindingKind
    project_id: str
    message: str
    expected: Decimal | None = None
    actual: Decimal | None = None
    task_id: str | None = None
    code: str = BUDGET_INTEGRITY_VIOLATION


@dataclass(frozen=True)
class IntegrityReport:
    """Audit result for one project."""

    project_id: str
    total_budget: Decimal
    paid_to_date: Decimal
    upfront_total: Decimal
    manual_total: Decimal
    final_total: Decimal
    findings: tuple[IntegrityFinding, ...] = field(default_factory=tuple)

    @property
    def committed_total(self) -> Decimal:
        return self.upfront_total + self.manual_total + self.final_total

    @property
    def is_clean(self) -> bool:
        return not self.findings


@dataclass(frozen=True)
class PaymentStateSummary:
    """Payment state of one completion project, as reported to operators."""

    is_valid: bool
    upfront_paid: bool
    manual_payments_count: int
    remaining_amount: Decimal
    errors: tuple[str, ...]
    total_budget: Decimal
    upfront_amount: Decimal
    manual_payments_total: Decimal
    final_amount: Decimal


def check_amount(
    snapshot: LedgerSnapshot,
    proposed_amount: Decimal,
    invoice_type: InvoiceType,
) -> BudgetIntegrityResult:
    """
    Check ``proposed_amount`` against a snapshot already in hand.

    Upfront payments are bounded by the upfront slice, task and final
    payments by the task pool.  Both are also bounded by the total budget
    across every committed invoice.
    """
    project = snapshot.project
    errors: list[str] = []

    if InvoiceType(invoice_type) == InvoiceType.UPFRONT:
        current = upfront_amount(project.total_budget) - snapshot.committed_sum(
            InvoiceType.UPFRONT
        )
    else:
        current = remaining_budget(
            project.total_budget, snapshot.manual_sum
        ) - snapshot.committed_sum(InvoiceType.FINAL)

    if proposed_amount <= 0:
        errors.append("Payment amount must be positive")

    would_result_in_negative = current - proposed_amount < 0
    if would_result_in_negative:
        errors.append(
            f"Payment of {proposed_amount} would exceed remaining budget of {current}"
        )

    headroom = project.total_budget - snapshot.committed_sum() - proposed_amount
    if headroom < 0:
        errors.append(
            f"Payment of {proposed_amount} would raise committed payments "
            f"above the total budget of {project.total_budget}"
        )

    return BudgetIntegrityResult(
        is_valid=not errors,
        current_remaining_budget=current,
        would_result_in_negative=would_result_in_negative,
        errors=tuple(errors),
    )


class IntegrityValidator:
    """
    Budget integrity checks over the stores.

    Contract:
        Never writes.  ``validate`` returns a result value; it raises only
        for store failures (StorageError).
    """

    def __init__(
        self,
        project_store: ProjectStore,
        task_store: TaskStore,
        invoice_store: InvoiceStore,
    ):
        self._projects = project_store
        self._gate = EligibilityGate(project_store, task_store, invoice_store)

    # ------------------------------------------------------------------
    # Per-amount check
    # ------------------------------------------------------------------

    def validate(
        self,
        project_id: str,
        proposed_amount: Decimal,
        invoice_type: InvoiceType = InvoiceType.FINAL,
    ) -> BudgetIntegrityResult:
        """Would paying ``proposed_amount`` as ``invoice_type`` stay within budget?"""
        snapshot = self._gate.snapshot(project_id)
        if snapshot is None:
            return BudgetIntegrityResult(False, ZERO, False, ("Project not found",))
        if not snapshot.project.is_completion:
            return BudgetIntegrityResult(False, ZERO, False, ("Not a completion project",))
        return check_amount(snapshot, proposed_amount, invoice_type)

    # ------------------------------------------------------------------
    # Offline audit
    # ------------------------------------------------------------------

    def audit_project(self, project_id: str) -> IntegrityReport | None:
        """Audit one project; None when it does not exist."""
        snapshot = self._gate.snapshot(project_id)
        if snapshot is None:
            return None
        report = self._audit(snapshot)
        for finding in report.findings:
            logger.error(
                "budget_integrity_violation",
                extra={
                    "project_id": finding.project_id,
                    "task_id": finding.task_id,
                    "kind": finding.kind.value,
                    "detail": finding.message,
                    "expected": finding.expected,
                    "actual": finding.actual,
                },
            )
        return report

    def audit_all(self) -> list[IntegrityReport]:
        """Audit every completion project."""
        reports = []
        for project_id in self._projects.list_ids(InvoicingMethod.COMPLETION):
            report = self.audit_project(project_id)
            if report is not None:
                reports.append(report)
        logger.info(
            "integrity_audit_completed",
            extra={
                "projects": len(reports),
                "violations": sum(len(r.findings) for r in reports),
            },
        )
        return reports

    def _audit(self, snapshot: LedgerSnapshot) -> IntegrityReport:
        project = snapshot.project
        pid = project.project_id
        findings: list[IntegrityFinding] = []

        upfront_total = snapshot.committed_sum(InvoiceType.UPFRONT)
        manual_total = snapshot.committed_sum(InvoiceType.MANUAL)
        final_total = snapshot.committed_sum(InvoiceType.FINAL)
        committed = upfront_total + manual_total + final_total

        if committed > project.total_budget:
            findings.append(IntegrityFinding(
                FindingKind.OVER_BUDGET, pid,
                f"Committed payments {committed} exceed budget {project.total_budget}",
                expected=project.total_budget, actual=committed,
            ))

        pool = round_money(task_portion_budget(project.total_budget))
        if manual_total + final_total > pool + ROUNDING_TOLERANCE:
            findings.append(IntegrityFinding(
                FindingKind.POOL_OVERDRAWN, pid,
                f"Task payments {manual_total + final_total} exceed the task pool {pool}",
                expected=pool, actual=manual_total + final_total,
            ))

        upfront_invoices = snapshot.live_of_type(InvoiceType.UPFRONT)
        if len(upfront_invoices) > 1:
            findings.append(IntegrityFinding(
                FindingKind.DUPLICATE_UPFRONT, pid,
                f"{len(upfront_invoices)} live upfront invoices",
            ))
        expected_upfront = upfront_amount(project.total_budget)
        for invoice in upfront_invoices:
            if abs(invoice.total_amount - expected_upfront) > ROUNDING_TOLERANCE:
                findings.append(IntegrityFinding(
                    FindingKind.UPFRONT_AMOUNT_MISMATCH, pid,
                    f"Upfront invoice {invoice.invoice_number} carries "
                    f"{invoice.total_amount}, expected {expected_upfront}",
                    expected=expected_upfront, actual=invoice.total_amount,
                ))

        final_invoices = snapshot.live_of_type(InvoiceType.FINAL)
        if len(final_invoices) > 1:
            findings.append(IntegrityFinding(
                FindingKind.DUPLICATE_FINAL, pid,
                f"{len(final_invoices)} live final invoices",
            ))

        per_task = Counter(
            inv.task_id for inv in snapshot.live_invoices if inv.task_id is not None
        )
        for task_id, count in sorted(per_task.items()):
            if count > 1:
                findings.append(IntegrityFinding(
                    FindingKind.DUPLICATE_TASK_PAYMENT, pid,
                    f"Task {task_id} has {count} live invoices",
                    task_id=task_id,
                ))

        for task in snapshot.tasks:
            has_invoice = per_task.get(task.task_id, 0) > 0
            if has_invoice and not task.invoice_paid:
                findings.append(IntegrityFinding(
                    FindingKind.TASK_FLAG_MISMATCH, pid,
                    f"Task {task.task_id} has a live invoice but invoice_paid is false",
                    task_id=task.task_id,
                ))

        if abs(project.paid_to_date - committed) > ROUNDING_TOLERANCE:
            findings.append(IntegrityFinding(
                FindingKind.PAID_TO_DATE_MISMATCH, pid,
                f"paid_to_date {project.paid_to_date} differs from committed "
                f"invoices {committed}",
                expected=committed, actual=project.paid_to_date,
            ))

        if self._fully_paid(snapshot):
            components = 2 + len(snapshot.live_of_type(InvoiceType.MANUAL))
            tolerance = ROUNDING_TOLERANCE * components
            if abs(committed - project.total_budget) > tolerance:
                findings.append(IntegrityFinding(
                    FindingKind.IDENTITY_MISMATCH, pid,
                    f"upfront + manual + final = {committed}, "
                    f"budget {project.total_budget}",
                    expected=project.total_budget, actual=committed,
                ))

        return IntegrityReport(
            project_id=pid,
            total_budget=project.total_budget,
            paid_to_date=project.paid_to_date,
            upfront_total=upfront_total,
            manual_total=manual_total,
            final_total=final_total,
            findings=tuple(findings),
        )

    @staticmethod
    def _fully_paid(snapshot: LedgerSnapshot) -> bool:
        """Every task approved and paid, and the pool fully distributed."""
        if not snapshot.all_tasks_approved:
            return False
        if any(snapshot.live_invoice_for_task(t.task_id) is None for t in snapshot.tasks):
            return False
        return snapshot.final_invoice is not None or snapshot.final_remaining <= 0

    # ------------------------------------------------------------------
    # Operator summary
    # ------------------------------------------------------------------

    def validate_payment_state(self, project_id: str) -> PaymentStateSummary:
        """Upfront status, manual payments and what the final payout would be."""
        snapshot = self._gate.snapshot(project_id)
        if snapshot is None or not snapshot.project.is_completion:
            error = "Project not found" if snapshot is None else "Project is not completion-based"
            return PaymentStateSummary(
                is_valid=False,
                upfront_paid=False,
                manual_payments_count=0,
                remaining_amount=ZERO,
                errors=(error,),
                total_budget=ZERO,
                upfront_amount=ZERO,
                manual_payments_total=ZERO,
                final_amount=ZERO,
            )

        project = snapshot.project
        errors: list[str] = []
        upfront_paid = snapshot.upfront_invoice is not None
        if not upfront_paid:
            errors.append("Upfront payment (12%) not completed")

        manual_invoices = snapshot.live_of_type(InvoiceType.MANUAL)
        remaining = snapshot.final_remaining
        if snapshot.committed_sum() > project.total_budget:
            errors.append(
                f"Total payments ({snapshot.committed_sum()}) exceed project "
                f"budget ({project.total_budget})"
            )

        return PaymentStateSummary(
            is_valid=not errors,
            upfront_paid=upfront_paid,
            manual_payments_count=len(manual_invoices),
            remaining_amount=remaining,
            errors=tuple(errors),
            total_budget=project.total_budget,
            upfront_amount=upfront_amount(project.total_budget),
            manual_payments_total=snapshot.manual_sum,
            final_amount=remaining,
        )
