"""
Concurrent payment attempts.

Verifies:
- Many threads paying the same upfront produce exactly one invoice; one
  caller sees PAID and the rest see ALREADY_PROCESSED with that invoice
- The same holds for orchestrators that share no in-process lock, where
  only the database protects the invoice slot
- Same-task manual payments produce one invoice
- Payments on different tasks and projects all succeed with distinct numbers
- The budget is never overdrawn under concurrency
- Concurrent settlement of one processing invoice calls the gateway once
- Project locks are dropped once no payment holds them
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from completion_ledger.domain.gateway import MockPaymentGateway
from completion_ledger.domain.values import InvoiceType, TaskStatus
from completion_ledger.services.payment_orchestrator import PaymentOrchestrator
from completion_ledger.services.outcomes import PaymentStatus

PID = "proj-1"
APPROVED = TaskStatus.APPROVED


def run_concurrently(calls):
    """Start every call at the same moment; return results in call order."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        barrier.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


class TestSameUpfront:
    def test_one_invoice_for_eight_threads(self, orchestrator, seed_project, list_invoices):
        seed_project(PID)

        outcomes = run_concurrently([lambda: orchestrator.pay_upfront(PID)] * 8)

        [invoice] = list_invoices(PID, InvoiceType.UPFRONT)
        statuses = [o.status for o in outcomes]
        assert statuses.count(PaymentStatus.PAID) == 1
        assert statuses.count(PaymentStatus.ALREADY_PROCESSED) == 7
        assert {o.invoice_number for o in outcomes} == {invoice.invoice_number}

    def test_paid_to_date_applied_once(self, orchestrator, seed_project, read_project):
        seed_project(PID)

        run_concurrently([lambda: orchestrator.pay_upfront(PID)] * 8)

        assert read_project(PID).paid_to_date == Decimal("600.00")

    @pytest.mark.slow_locks
    def test_separate_orchestrators(
        self, uow_factory, event_sink, clock, seed_project, list_invoices, read_project
    ):
        seed_project(PID)
        orchestrators = [
            PaymentOrchestrator(uow_factory, event_sink=event_sink, clock=clock)
            for _ in range(4)
        ]

        outcomes = run_concurrently([lambda o=o: o.pay_upfront(PID) for o in orchestrators])

        [invoice] = list_invoices(PID, InvoiceType.UPFRONT)
        assert all(o.is_success for o in outcomes)
        assert {o.invoice_number for o in outcomes} == {invoice.invoice_number}
        assert [o.status for o in outcomes].count(PaymentStatus.PAID) <= 1
        assert read_project(PID).paid_to_date == Decimal("600.00")


class TestManualRaces:
    def test_same_task_one_invoice(self, orchestrator, seed_project, list_invoices, read_task):
        seed_project(PID, tasks=(APPROVED, APPROVED, APPROVED, APPROVED))

        outcomes = run_concurrently(
            [lambda: orchestrator.pay_manual_for_task(PID, "proj-1-t1")] * 6
        )

        [invoice] = list_invoices(PID, InvoiceType.MANUAL)
        assert invoice.task_id == "proj-1-t1"
        assert [o.status for o in outcomes].count(PaymentStatus.PAID) == 1
        assert read_task("proj-1-t1").invoice_paid

    def test_different_tasks_all_paid(self, orchestrator, seed_project, list_invoices, read_project):
        seed_project(PID, tasks=(APPROVED, APPROVED, APPROVED, APPROVED))
        task_ids = [f"proj-1-t{i}" for i in range(1, 5)]

        outcomes = run_concurrently(
            [lambda t=t: orchestrator.pay_manual_for_task(PID, t) for t in task_ids]
        )

        assert all(o.status == PaymentStatus.PAID for o in outcomes)
        numbers = {o.invoice_number for o in outcomes}
        assert len(numbers) == 4
        assert len(list_invoices(PID, InvoiceType.MANUAL)) == 4
        assert read_project(PID).paid_to_date == Decimal("4400.00")

    def test_final_racing_manual_never_overdraws(
        self, orchestrator, seed_project, list_invoices, read_project
    ):
        seed_project(PID, tasks=(APPROVED, APPROVED))

        run_concurrently([
            lambda: orchestrator.pay_manual_for_task(PID, "proj-1-t1"),
            lambda: orchestrator.pay_final(PID),
            lambda: orchestrator.pay_manual_for_task(PID, "proj-1-t2"),
        ])

        drawn = sum(
            (i.total_amount for i in list_invoices(PID) if i.is_live), Decimal("0")
        )
        assert drawn <= Decimal("4400.00")
        assert read_project(PID).paid_to_date == drawn


class TestCrossProject:
    def test_projects_do_not_block_each_other(self, orchestrator, seed_project, list_invoices):
        project_ids = [f"proj-{i}" for i in range(1, 5)]
        for pid in project_ids:
            seed_project(pid)

        outcomes = run_concurrently(
            [lambda p=p: orchestrator.pay_upfront(p) for p in project_ids]
        )

        assert all(o.status == PaymentStatus.PAID for o in outcomes)
        assert len({o.invoice_number for o in outcomes}) == 4
        for pid in project_ids:
            assert len(list_invoices(pid, InvoiceType.UPFRONT)) == 1
        assert len(orchestrator.lock_registry) == 0


class SlowGateway(MockPaymentGateway):
    def execute(self, invoice_number, amount):
        time.sleep(0.2)
        return super().execute(invoice_number, amount)


class TestSettlementRace:
    def test_gateway_called_once(
        self, uow_factory, event_sink, clock, seed_project, read_project, list_invoices
    ):
        seed_project(PID, tasks=(APPROVED,))
        gateway = SlowGateway(fail_next=1)
        orchestrator = PaymentOrchestrator(
            uow_factory, event_sink=event_sink, gateway=gateway, clock=clock
        )
        number = orchestrator.pay_final(PID).invoice_number
        gateway.calls.clear()

        outcomes = run_concurrently([lambda: orchestrator.settlement.settle(number)] * 4)

        assert len(gateway.calls) == 1
        statuses = [o.status for o in outcomes]
        assert statuses.count(PaymentStatus.PAID) == 1
        assert set(statuses) <= {
            PaymentStatus.PAID,
            PaymentStatus.PENDING_SETTLEMENT,
            PaymentStatus.ALREADY_PROCESSED,
        }
        [invoice] = list_invoices(PID, InvoiceType.FINAL)
        assert invoice.settlement_claimed_at is None
        assert read_project(PID).paid_to_date == Decimal("4400.00")
