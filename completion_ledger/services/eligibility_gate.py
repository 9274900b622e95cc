"""
EligibilityGate -- store-reading shell around the eligibility rules.

Responsibility:
    Loads a fresh LedgerSnapshot (project, all tasks, all invoices) on
    EVERY call and hands it to the pure rules in domain/eligibility.py.
    Nothing is cached between calls: a task approval landing between two
    checks must change the second answer.

Architecture position:
    Ledger > Services.  Read-only; never writes to any store.

Failure modes:
    - StorageError from a store propagates; the orchestrator decides
      whether to retry the read.
"""

from completion_ledger.domain.eligibility import (
    EligibilityDecision,
    FinalPayoutStatus,
    LedgerSnapshot,
    PaymentPhase,
    check_final,
    check_manual,
    check_upfront,
    final_payout_status,
)
from completion_ledger.domain.values import InvoiceType
from completion_ledger.logging_config import get_logger
from completion_ledger.stores.base import InvoiceStore, ProjectStore, TaskStore

logger = get_logger("services.eligibility_gate")


class EligibilityGate:
    """
    Decides whether a payment action may proceed now.

    Contract:
        Every public method reads current state from the stores and
        returns a value; rejections are EligibilityDecision values with a
        code, never exceptions.
    """

    def __init__(
        self,
        project_store: ProjectStore,
        task_store: TaskStore,
        invoice_store: InvoiceStore,
    ):
        self._projects = project_store
        self._tasks = task_store
        self._invoices = invoice_store

    def snapshot(self, project_id: str, for_update: bool = False) -> LedgerSnapshot | None:
        """One consistent read of the project's payment state, or None if unknown."""
        project = self._projects.read(project_id, for_update=for_update)
        if project is None:
            return None
        return LedgerSnapshot(
            project=project,
            tasks=tuple(self._tasks.list_by_project(project_id)),
            invoices=tuple(self._invoices.list_by_project(project_id)),
        )

    def check(
        self,
        action: InvoiceType,
        project_id: str,
        task_id: str | None = None,
        for_update: bool = False,
    ) -> EligibilityDecision:
        snapshot = self.snapshot(project_id, for_update=for_update)
        action = InvoiceType(action)
        if action == InvoiceType.UPFRONT:
            decision = check_upfront(project_id, snapshot)
        elif action == InvoiceType.MANUAL:
            if task_id is None:
                raise ValueError("Manual payment checks require a task_id")
            decision = check_manual(project_id, task_id, snapshot)
        else:
            decision = check_final(project_id, snapshot)

        if not decision.allowed:
            logger.info(
                "eligibility_rejected",
                extra={
                    "project_id": project_id,
                    "task_id": task_id,
                    "action": action.value,
                    "code": decision.code.value,
                    "reason": decision.reason,
                },
            )
        return decision

    def check_upfront(self, project_id: str) -> EligibilityDecision:
        return self.check(InvoiceType.UPFRONT, project_id)

    def check_manual(self, project_id: str, task_id: str) -> EligibilityDecision:
        return self.check(InvoiceType.MANUAL, project_id, task_id)

    def check_final(self, project_id: str) -> EligibilityDecision:
        return self.check(InvoiceType.FINAL, project_id)

    def phase(self, project_id: str) -> PaymentPhase | None:
        snapshot = self.snapshot(project_id)
        return snapshot.phase if snapshot is not None else None

    def final_payout_status(self, project_id: str) -> FinalPayoutStatus:
        """Readiness for the final payout, recomputed from the stores."""
        return final_payout_status(project_id, self.snapshot(project_id))
