"""
Tests for the pure eligibility rules.

Verifies:
- Upfront, manual and final checks over in-memory snapshots
- Check order: first failing rule wins
- Scenario A: final blocked with NO_REMAINING_BUDGET once manual
  invoices consumed the pool
- Scenario B: final blocked with NOT_ALL_TASKS_APPROVED (2/4)
- Void invoices free their slot
- Derived payment phase and final payout status
"""

from datetime import datetime, timezone
from decimal import Decimal

from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord, TaskRecord
from completion_ledger.domain.eligibility import (
    LedgerSnapshot,
    PaymentPhase,
    RejectionCode,
    check_final,
    check_manual,
    check_upfront,
    final_payout_status,
    manual_amount_for,
    payment_amount,
)
from completion_ledger.domain.values import (
    InvoiceStatus,
    InvoiceType,
    InvoicingMethod,
    ProjectStatus,
    TaskStatus,
)

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)
PID = "proj-1"


def make_project(status=ProjectStatus.ONGOING, budget="5000", method=InvoicingMethod.COMPLETION):
    return ProjectRecord(
        project_id=PID,
        total_budget=Decimal(budget),
        invoicing_method=method,
        status=status,
    )


def make_tasks(*statuses, paid=()):
    return tuple(
        TaskRecord(
            task_id=f"t{i}",
            project_id=PID,
            status=status,
            invoice_paid=f"t{i}" in paid,
        )
        for i, status in enumerate(statuses, start=1)
    )


def make_invoice(number, invoice_type, amount, task_id=None, status=InvoiceStatus.PAID):
    return InvoiceRecord(
        invoice_number=number,
        project_id=PID,
        invoice_type=invoice_type,
        total_amount=Decimal(amount),
        status=status,
        issue_date=NOW,
        due_date=NOW,
        task_id=task_id,
    )


def snapshot(project=None, tasks=(), invoices=()):
    return LedgerSnapshot(project=project or make_project(), tasks=tasks, invoices=invoices)


APPROVED = TaskStatus.APPROVED
ONGOING = TaskStatus.ONGOING


class TestCommonChecks:
    """Project existence and invoicing method apply to every action."""

    def test_missing_project(self):
        for decision in (
            check_upfront(PID, None),
            check_manual(PID, "t1", None),
            check_final(PID, None),
        ):
            assert not decision.allowed
            assert decision.code == RejectionCode.PROJECT_NOT_FOUND

    def test_milestone_project(self):
        snap = snapshot(make_project(method=InvoicingMethod.MILESTONE))
        decision = check_upfront(PID, snap)
        assert decision.code == RejectionCode.NOT_COMPLETION_PROJECT
        assert decision.payload["invoicing_method"] == "milestone"


class TestUpfront:
    def test_allowed_for_proposed_project(self):
        decision = check_upfront(PID, snapshot(make_project(ProjectStatus.PROPOSED)))
        assert decision.allowed
        assert bool(decision) is True

    def test_already_paid_is_replay(self):
        upfront = make_invoice("NM-001", InvoiceType.UPFRONT, "600")
        decision = check_upfront(PID, snapshot(invoices=(upfront,)))
        assert decision.code == RejectionCode.UPFRONT_ALREADY_PAID
        assert decision.is_replay
        assert decision.existing_invoice == upfront

    def test_void_upfront_frees_slot(self):
        void = make_invoice("NM-001", InvoiceType.UPFRONT, "600", status=InvoiceStatus.VOID)
        assert check_upfront(PID, snapshot(invoices=(void,))).allowed

    def test_paused_project_not_payable(self):
        decision = check_upfront(PID, snapshot(make_project(ProjectStatus.PAUSED)))
        assert decision.code == RejectionCode.PROJECT_NOT_PAYABLE
        assert not decision.is_replay

    def test_replay_checked_before_status(self):
        """A completed project with its upfront issued reports the replay."""
        upfront = make_invoice("NM-001", InvoiceType.UPFRONT, "600")
        decision = check_upfront(
            PID, snapshot(make_project(ProjectStatus.COMPLETED), invoices=(upfront,))
        )
        assert decision.code == RejectionCode.UPFRONT_ALREADY_PAID


class TestManual:
    def test_approved_task_allowed(self):
        snap = snapshot(tasks=make_tasks(APPROVED, ONGOING))
        decision = check_manual(PID, "t1", snap)
        assert decision.allowed
        assert decision.task_id == "t1"

    def test_unknown_task(self):
        decision = check_manual(PID, "t9", snapshot(tasks=make_tasks(APPROVED)))
        assert decision.code == RejectionCode.TASK_NOT_FOUND

    def test_task_not_approved(self):
        decision = check_manual(PID, "t1", snapshot(tasks=make_tasks(TaskStatus.IN_REVIEW)))
        assert decision.code == RejectionCode.TASK_NOT_APPROVED
        assert decision.payload["task_status"] == "In review"

    def test_flagged_task_already_invoiced(self):
        snap = snapshot(tasks=make_tasks(APPROVED, paid=("t1",)))
        decision = check_manual(PID, "t1", snap)
        assert decision.code == RejectionCode.TASK_ALREADY_INVOICED
        assert decision.existing_invoice is None
        assert not decision.is_replay

    def test_live_invoice_already_invoiced(self):
        invoice = make_invoice("NM-002", InvoiceType.MANUAL, "1100", task_id="t1")
        snap = snapshot(tasks=make_tasks(APPROVED), invoices=(invoice,))
        decision = check_manual(PID, "t1", snap)
        assert decision.code == RejectionCode.TASK_ALREADY_INVOICED
        assert decision.existing_invoice == invoice

    def test_already_invoiced_checked_before_approval(self):
        """A paid task later moved back to review still reports the replay."""
        snap = snapshot(tasks=make_tasks(TaskStatus.IN_REVIEW, paid=("t1",)))
        assert check_manual(PID, "t1", snap).code == RejectionCode.TASK_ALREADY_INVOICED

    def test_proposed_project_not_payable(self):
        snap = snapshot(make_project(ProjectStatus.PROPOSED), tasks=make_tasks(APPROVED))
        assert check_manual(PID, "t1", snap).code == RejectionCode.PROJECT_NOT_PAYABLE

    def test_exhausted_pool(self):
        final = make_invoice("NM-009", InvoiceType.FINAL, "4400")
        snap = snapshot(tasks=make_tasks(APPROVED), invoices=(final,))
        assert check_manual(PID, "t1", snap).code == RejectionCode.NO_REMAINING_BUDGET

    def test_amount_is_equal_share_over_all_tasks(self):
        snap = snapshot(tasks=make_tasks(APPROVED, ONGOING, ONGOING, ONGOING))
        assert manual_amount_for(snap) == Decimal("1100.00")
        assert payment_amount(InvoiceType.MANUAL, snap) == Decimal("1100.00")


class TestFinal:
    def test_scenario_a_no_remaining_budget(self):
        """Four tasks approved and invoiced at 1100 each: nothing left."""
        tasks = make_tasks(APPROVED, APPROVED, APPROVED, APPROVED, paid=("t1", "t2", "t3", "t4"))
        invoices = tuple(
            make_invoice(f"NM-00{i}", InvoiceType.MANUAL, "1100", task_id=f"t{i}")
            for i in range(1, 5)
        )
        decision = check_final(PID, snapshot(tasks=tasks, invoices=invoices))
        assert decision.code == RejectionCode.NO_REMAINING_BUDGET
        assert decision.payload["remaining_budget"] == Decimal("0.00")

    def test_scenario_b_not_all_tasks_approved(self):
        tasks = make_tasks(APPROVED, APPROVED, ONGOING, ONGOING, paid=("t1", "t2"))
        invoices = (
            make_invoice("NM-001", InvoiceType.MANUAL, "1100", task_id="t1"),
            make_invoice("NM-002", InvoiceType.MANUAL, "1100", task_id="t2"),
        )
        decision = check_final(PID, snapshot(tasks=tasks, invoices=invoices))
        assert decision.code == RejectionCode.NOT_ALL_TASKS_APPROVED
        assert decision.payload == {"approved": 2, "total": 4}

    def test_not_all_approved_reported_before_no_budget(self):
        """An unfinished project is reported as unfinished even with the pool spent."""
        tasks = make_tasks(APPROVED, ONGOING)
        final_pool = make_invoice("NM-001", InvoiceType.MANUAL, "4400", task_id="t1")
        decision = check_final(PID, snapshot(tasks=tasks, invoices=(final_pool,)))
        assert decision.code == RejectionCode.NOT_ALL_TASKS_APPROVED

    def test_project_without_tasks_never_all_approved(self):
        decision = check_final(PID, snapshot())
        assert decision.code == RejectionCode.NOT_ALL_TASKS_APPROVED

    def test_allowed_with_remaining_budget(self):
        """Two of four tasks invoiced manually, then all approved: 2200 left."""
        tasks = make_tasks(APPROVED, APPROVED, APPROVED, APPROVED, paid=("t1", "t2"))
        invoices = (
            make_invoice("NM-001", InvoiceType.MANUAL, "1100", task_id="t1"),
            make_invoice("NM-002", InvoiceType.MANUAL, "1100", task_id="t2"),
        )
        snap = snapshot(tasks=tasks, invoices=invoices)
        assert check_final(PID, snap).allowed
        assert payment_amount(InvoiceType.FINAL, snap) == Decimal("2200.00")

    def test_already_processed(self):
        final = make_invoice("NM-005", InvoiceType.FINAL, "4400")
        snap = snapshot(
            make_project(ProjectStatus.COMPLETED),
            tasks=make_tasks(APPROVED),
            invoices=(final,),
        )
        decision = check_final(PID, snap)
        assert decision.code == RejectionCode.FINAL_ALREADY_PROCESSED
        assert decision.is_replay

    def test_processing_final_counts_as_processed(self):
        final = make_invoice("NM-005", InvoiceType.FINAL, "4400", status=InvoiceStatus.PROCESSING)
        snap = snapshot(tasks=make_tasks(APPROVED), invoices=(final,))
        assert check_final(PID, snap).code == RejectionCode.FINAL_ALREADY_PROCESSED


class TestPhaseAndPayoutStatus:
    def test_phase_progression(self):
        tasks = make_tasks(APPROVED, ONGOING)
        upfront = make_invoice("NM-001", InvoiceType.UPFRONT, "600")
        manual = make_invoice("NM-002", InvoiceType.MANUAL, "2200", task_id="t1")
        final = make_invoice("NM-003", InvoiceType.FINAL, "2200")

        assert snapshot(tasks=tasks).phase == PaymentPhase.NO_PAYMENTS_YET
        assert snapshot(tasks=tasks, invoices=(upfront,)).phase == PaymentPhase.UPFRONT_PAID
        assert (
            snapshot(tasks=tasks, invoices=(upfront, manual)).phase
            == PaymentPhase.TASKS_IN_PROGRESS
        )
        all_approved = make_tasks(APPROVED, APPROVED)
        assert (
            snapshot(tasks=all_approved, invoices=(upfront, manual)).phase
            == PaymentPhase.ALL_TASKS_APPROVED
        )
        assert (
            snapshot(tasks=all_approved, invoices=(upfront, manual, final)).phase
            == PaymentPhase.FINAL_PAID
        )

    def test_final_payout_status_ready(self):
        status = final_payout_status(PID, snapshot(tasks=make_tasks(APPROVED, APPROVED)))
        assert status.is_ready
        assert status.remaining_budget == Decimal("4400.00")
        assert status.approved_tasks == 2
        assert status.total_tasks == 2

    def test_final_payout_status_missing_project(self):
        status = final_payout_status(PID, None)
        assert not status.is_ready
        assert status.phase is None
        assert "not found" in status.reason
