"""
Tests for IntegrityValidator: proposed-amount checks and ledger audits.

Verifies:
- A ledger built only through the orchestrator audits clean
- Imported or corrupted ledgers report each kind of violation
- validate() bounds a proposed amount by what is left
- validate_payment_state() reports upfront status and the final payout
- audit_all() covers completion projects only and logs a summary
"""

from decimal import Decimal

import pytest

from completion_ledger.domain.values import InvoiceType, InvoicingMethod, TaskStatus
from completion_ledger.services.integrity_validator import FindingKind, IntegrityValidator

PID = "proj-1"
APPROVED = TaskStatus.APPROVED


@pytest.fixture
def audit(uow_factory):
    """Run one validator call in its own unit of work."""

    def _run(fn):
        with uow_factory() as uow:
            return fn(IntegrityValidator(uow.projects, uow.tasks, uow.invoices))

    return _run


def kinds(report):
    return {finding.kind for finding in report.findings}


class TestAuditProject:
    def test_full_lifecycle_is_clean(self, orchestrator, seed_project, set_task_status, audit):
        seed_project(PID, tasks=(APPROVED, APPROVED, APPROVED, TaskStatus.ONGOING))
        orchestrator.pay_upfront(PID)
        for index in (1, 2, 3):
            orchestrator.pay_manual_for_task(PID, f"proj-1-t{index}")
        set_task_status("proj-1-t4")
        orchestrator.pay_final(PID)

        report = audit(lambda v: v.audit_project(PID))

        assert report.is_clean
        assert report.upfront_total == Decimal("600.00")
        assert report.manual_total == Decimal("3300.00")
        assert report.final_total == Decimal("1100.00")
        assert report.committed_total == Decimal("5000.00")

    def test_every_task_paid_manually_is_clean(self, orchestrator, seed_project, audit):
        seed_project(PID, tasks=(APPROVED, APPROVED))
        orchestrator.pay_upfront(PID)
        orchestrator.pay_manual_for_task(PID, "proj-1-t1")
        orchestrator.pay_manual_for_task(PID, "proj-1-t2")

        assert audit(lambda v: v.audit_project(PID)).is_clean

    def test_corrupted_ledger(self, seed_project, seed_invoice, audit, captured_logs):
        seed_project(PID, tasks=(APPROVED, APPROVED, APPROVED, APPROVED), paid_to_date="100")
        seed_invoice("NM-001", PID, InvoiceType.UPFRONT, "600")
        seed_invoice("NM-002", PID, InvoiceType.MANUAL, "2500", task_id="proj-1-t1")
        seed_invoice("NM-003", PID, InvoiceType.MANUAL, "2500", task_id="proj-1-t2")

        report = audit(lambda v: v.audit_project(PID))

        assert kinds(report) == {
            FindingKind.OVER_BUDGET,
            FindingKind.POOL_OVERDRAWN,
            FindingKind.TASK_FLAG_MISMATCH,
            FindingKind.PAID_TO_DATE_MISMATCH,
        }
        flagged = sorted(f.task_id for f in report.findings if f.kind == FindingKind.TASK_FLAG_MISMATCH)
        assert flagged == ["proj-1-t1", "proj-1-t2"]
        violations = [r for r in captured_logs() if r["message"] == "budget_integrity_violation"]
        assert len(violations) == len(report.findings)
        assert all(r["level"] == "ERROR" for r in violations)

    def test_upfront_amount_mismatch(self, seed_project, seed_invoice, audit):
        seed_project(PID, paid_to_date="500")
        seed_invoice("NM-001", PID, InvoiceType.UPFRONT, "500")

        report = audit(lambda v: v.audit_project(PID))

        [finding] = report.findings
        assert finding.kind == FindingKind.UPFRONT_AMOUNT_MISMATCH
        assert finding.expected == Decimal("600.00")
        assert finding.actual == Decimal("500.00")

    def test_unknown_project(self, audit):
        assert audit(lambda v: v.audit_project("missing")) is None


class TestValidate:
    def test_final_within_pool(self, seed_project, audit):
        seed_project(PID)

        result = audit(lambda v: v.validate(PID, Decimal("4400.00")))

        assert result.is_valid
        assert result.current_remaining_budget == Decimal("4400.00")
        assert not result.would_result_in_negative

    def test_over_remaining(self, orchestrator, seed_project, audit):
        seed_project(PID, tasks=(APPROVED, TaskStatus.ONGOING))
        orchestrator.pay_manual_for_task(PID, "proj-1-t1")

        result = audit(lambda v: v.validate(PID, Decimal("2200.01")))

        assert not result.is_valid
        assert result.would_result_in_negative
        assert result.current_remaining_budget == Decimal("2200.00")

    def test_upfront_bounded_by_slice(self, seed_project, audit):
        seed_project(PID)

        result = audit(lambda v: v.validate(PID, Decimal("601"), InvoiceType.UPFRONT))

        assert not result.is_valid

    def test_not_completion_project(self, seed_project, audit):
        seed_project(PID, invoicing_method=InvoicingMethod.MILESTONE)

        result = audit(lambda v: v.validate(PID, Decimal("100")))

        assert result.errors == ("Not a completion project",)

    def test_project_not_found(self, audit):
        result = audit(lambda v: v.validate("missing", Decimal("100")))
        assert result.errors == ("Project not found",)


class TestPaymentState:
    def test_before_upfront(self, seed_project, audit):
        seed_project(PID)

        state = audit(lambda v: v.validate_payment_state(PID))

        assert not state.is_valid
        assert not state.upfront_paid
        assert state.errors == ("Upfront payment (12%) not completed",)
        assert state.upfront_amount == Decimal("600.00")

    def test_mid_project(self, orchestrator, seed_project, audit):
        seed_project(PID, tasks=(APPROVED, TaskStatus.ONGOING, TaskStatus.ONGOING, TaskStatus.ONGOING))
        orchestrator.pay_upfront(PID)
        orchestrator.pay_manual_for_task(PID, "proj-1-t1")

        state = audit(lambda v: v.validate_payment_state(PID))

        assert state.is_valid
        assert state.manual_payments_count == 1
        assert state.manual_payments_total == Decimal("1100.00")
        assert state.final_amount == Decimal("3300.00")


class TestAuditAll:
    def test_completion_projects_only(self, orchestrator, seed_project, audit, captured_logs):
        seed_project("proj-1")
        seed_project("proj-2")
        seed_project("proj-3", invoicing_method=InvoicingMethod.MILESTONE)
        orchestrator.pay_upfront("proj-1")

        reports = audit(lambda v: v.audit_all())

        assert sorted(r.project_id for r in reports) == ["proj-1", "proj-2"]
        [summary] = [r for r in captured_logs() if r["message"] == "integrity_audit_completed"]
        assert summary["projects"] == 2
        assert summary["violations"] == 0
