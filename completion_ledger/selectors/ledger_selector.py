"""
Module: completion_ledger.selectors.ledger_selector
Responsibility: Read-only payment reports for completion projects: the budget
    breakdown, what has been committed per invoice type, the derived payment
    phase, final payout readiness and overall progress.
Architecture position: Ledger > Selectors.  Builds the same LedgerSnapshot
    the eligibility rules use, so reports and decisions never disagree.

Invariants enforced:
    - No stored progress or phase: both are derived from invoices and tasks
      at query time.

Failure modes:
    - ProjectNotFoundError for an unknown project id.
"""

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select

from completion_ledger.db.types import ZERO, round_money
from completion_ledger.domain.budget import (
    BudgetBreakdown,
    budget_breakdown,
    task_portion_budget,
)
from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord, TaskRecord
from completion_ledger.domain.eligibility import (
    FinalPayoutStatus,
    LedgerSnapshot,
    PaymentPhase,
    final_payout_status,
)
from completion_ledger.domain.values import InvoiceType
from completion_ledger.exceptions import ProjectNotFoundError
from completion_ledger.models.invoice import Invoice
from completion_ledger.models.project import Project
from completion_ledger.models.task import ProjectTask
from completion_ledger.selectors.base import BaseSelector

UPFRONT_WEIGHT = Decimal("12")
TASK_WEIGHT = Decimal("88")


@dataclass(frozen=True)
class ProjectPaymentSummary:
    """Everything an operator screen shows about one project's payments."""

    project_id: str
    title: str
    status: str
    total_budget: Decimal
    paid_to_date: Decimal
    upfront_paid: Decimal
    manual_paid: Decimal
    final_paid: Decimal
    remaining_budget: Decimal
    approved_tasks: int
    total_tasks: int
    phase: PaymentPhase
    progress_percent: Decimal
    breakdown: BudgetBreakdown | None
    final_payout: FinalPayoutStatus
    invoices: tuple[InvoiceRecord, ...]


def progress_percent(snapshot: LedgerSnapshot) -> Decimal:
    """
    Share of the project paid out, as a percentage.

    The upfront slice counts for 12 points once issued; the task pool
    counts for up to 88 points in proportion to what manual and final
    invoices have drawn from it.
    """
    upfront = UPFRONT_WEIGHT if snapshot.upfront_invoice is not None else ZERO
    pool = task_portion_budget(snapshot.project.total_budget)
    drawn = snapshot.manual_sum + snapshot.committed_sum(InvoiceType.FINAL)
    share = min(Decimal("1"), drawn / pool) if pool > 0 else ZERO
    return round_money(upfront + TASK_WEIGHT * share)


class LedgerSelector(BaseSelector[Project]):
    """Reports over one project's completion ledger."""

    def snapshot(self, project_id: str) -> LedgerSnapshot:
        project = self.session.execute(
            select(Project).where(Project.project_id == project_id)
        ).scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(project_id)

        tasks = self.session.execute(
            select(ProjectTask)
            .where(ProjectTask.project_id == project_id)
            .order_by(ProjectTask.task_id)
        ).scalars()
        invoices = self.session.execute(
            select(Invoice)
            .where(Invoice.project_id == project_id)
            .order_by(Invoice.issue_date, Invoice.invoice_number)
        ).scalars()
        return LedgerSnapshot(
            project=ProjectRecord.from_model(project),
            tasks=tuple(TaskRecord.from_model(t) for t in tasks),
            invoices=tuple(InvoiceRecord.from_model(i) for i in invoices),
        )

    def progress(self, project_id: str) -> Decimal:
        return progress_percent(self.snapshot(project_id))

    def summary(self, project_id: str) -> ProjectPaymentSummary:
        snapshot = self.snapshot(project_id)
        project = snapshot.project
        breakdown = None
        if snapshot.total_tasks > 0:
            breakdown = budget_breakdown(project.total_budget, snapshot.total_tasks)

        return ProjectPaymentSummary(
            project_id=project.project_id,
            title=project.title,
            status=project.status.value,
            total_budget=project.total_budget,
            paid_to_date=project.paid_to_date,
            upfront_paid=snapshot.committed_sum(InvoiceType.UPFRONT),
            manual_paid=snapshot.manual_sum,
            final_paid=snapshot.committed_sum(InvoiceType.FINAL),
            remaining_budget=snapshot.final_remaining - snapshot.committed_sum(InvoiceType.FINAL),
            approved_tasks=snapshot.approved_tasks,
            total_tasks=snapshot.total_tasks,
            phase=snapshot.phase,
            progress_percent=progress_percent(snapshot),
            breakdown=breakdown,
            final_payout=final_payout_status(project_id, snapshot),
            invoices=snapshot.invoices,
        )
