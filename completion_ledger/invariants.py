"""
Ledger Invariants Contract.

These invariants are structural law for every completion project. No
setting in ``ledger_config`` may relax them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the eligibility rules, the integrity
validator, the payment orchestrator, the invoice table's partial unique
indexes, and the recovery sweep.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the ledger."""

    BUDGET_CONSERVATION = "budget_conservation"
    """The sum of committed invoice amounts never exceeds the project's
    total budget. Enforced by IntegrityValidator before every commit."""

    SINGLE_UPFRONT = "single_upfront"
    """At most one non-void completion_upfront invoice per project.
    Enforced by the eligibility rules and a partial unique index."""

    SINGLE_MANUAL_PER_TASK = "single_manual_per_task"
    """At most one non-void completion_manual invoice per task. Enforced
    by the eligibility rules, Task.invoice_paid and a partial unique
    index."""

    SINGLE_FINAL = "single_final"
    """At most one non-void completion_final invoice per project, created
    only after every task is approved with positive remaining budget."""

    ACCOUNTING_IDENTITY = "accounting_identity"
    """upfront + sum(manual) + final == total_budget at full completion,
    within rounding tolerance. Checked by IntegrityValidator.audit_project."""

    PAID_TO_DATE_MONOTONIC = "paid_to_date_monotonic"
    """Project.paid_to_date never decreases and always equals the sum of
    committed invoices once every intent is settled."""

    AT_MOST_ONCE = "at_most_once"
    """Duplicate payment requests with the same idempotency key produce at
    most one invoice and one budget deduction."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "ledger_config",
    "scripts",
)
