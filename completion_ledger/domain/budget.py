"""
Budget Calculator -- the only place monetary formulas live.

Responsibility:
    Converts a project's total budget into its upfront amount, its task
    pool, the per-task manual invoice amount and the remaining final
    payout.  Every result is rounded to 2 places, ROUND_HALF_UP, through
    ``round_money`` at the point of calculation.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.  Leaf component:
    imports only db/types.py and exceptions.py.

Invariants enforced:
    - Upfront is 12% of the budget; the task pool is the remaining 88%.
    - The pool is split equally across ALL tasks of the project, approved
      or not.  Unapproved tasks keep their reserved share.
    - payable_manual_amount never exceeds what is left of the pool, so an
      uneven split rounded up cannot overdraw the pool on the last task.

Failure modes:
    - InvalidBudgetError when total_budget <= 0.
    - InvalidTaskCountError when total_task_count <= 0.
    - InvalidAmountError when a paid sum is negative.
"""

from dataclasses import dataclass
from decimal import Decimal

from completion_ledger.db.types import ZERO, round_money
from completion_ledger.exceptions import (
    InvalidAmountError,
    InvalidBudgetError,
    InvalidTaskCountError,
)

UPFRONT_RATE = Decimal("0.12")
TASK_POOL_RATE = Decimal("0.88")
DEFAULT_PLATFORM_FEE_RATE = Decimal("0.05")


def _require_budget(total_budget: Decimal) -> Decimal:
    budget = Decimal(total_budget)
    if budget <= 0:
        raise InvalidBudgetError(budget)
    return budget


def upfront_amount(total_budget: Decimal) -> Decimal:
    """12% of the budget, rounded.

    >>> upfront_amount(Decimal("5000"))
    Decimal('600.00')
    """
    return round_money(_require_budget(total_budget) * UPFRONT_RATE)


def task_portion_budget(total_budget: Decimal) -> Decimal:
    """The 88% pool behind every manual invoice and the final payout.

    Deliberately unrounded; callers round the quantity they derive from it.
    """
    return _require_budget(total_budget) * TASK_POOL_RATE


def manual_invoice_amount(total_budget: Decimal, total_task_count: int) -> Decimal:
    """Nominal equal share of the pool for one task.

    >>> manual_invoice_amount(Decimal("5000"), 4)
    Decimal('1100.00')
    """
    pool = task_portion_budget(total_budget)
    if total_task_count <= 0:
        raise InvalidTaskCountError(total_task_count)
    return round_money(pool / total_task_count)


def remaining_budget(total_budget: Decimal, paid_manual_invoices_sum: Decimal) -> Decimal:
    """Pool left after manual invoices: the final payout once all tasks are approved.

    May be negative if the stored history already overdraws the pool; the
    integrity validator reports that case.
    """
    if paid_manual_invoices_sum < 0:
        raise InvalidAmountError("paid_manual_invoices_sum", paid_manual_invoices_sum)
    return round_money(task_portion_budget(total_budget) - paid_manual_invoices_sum)


def payable_manual_amount(
    total_budget: Decimal,
    total_task_count: int,
    paid_manual_invoices_sum: Decimal,
) -> Decimal:
    """
    Amount actually invoiced for one approved task.

    The nominal share, capped at what is left of the pool and never below
    zero.  For 4400 split over 3 tasks this pays 1466.67, 1466.67 and then
    1466.66.
    """
    share = manual_invoice_amount(total_budget, total_task_count)
    left = remaining_budget(total_budget, paid_manual_invoices_sum)
    return max(ZERO, min(share, left))


def platform_fee_split(
    amount: Decimal,
    fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE,
) -> tuple[Decimal, Decimal]:
    """
    Split an invoice amount into (freelancer_amount, platform_fee).

    The fee is rounded; the freelancer receives the exact remainder so the
    two parts always add back up to ``amount``.
    """
    if amount < 0:
        raise InvalidAmountError("amount", amount)
    if fee_rate < 0 or fee_rate >= 1:
        raise InvalidAmountError("fee_rate", fee_rate)
    platform_fee = round_money(amount * fee_rate)
    return round_money(amount - platform_fee), platform_fee


@dataclass(frozen=True)
class BudgetBreakdown:
    """How a budget divides across upfront, tasks and the final payout."""

    total_budget: Decimal
    total_task_count: int
    upfront_amount: Decimal
    task_pool: Decimal
    per_task_amount: Decimal

    @property
    def upfront_formula(self) -> str:
        return f"{self.total_budget} x 12% = {self.upfront_amount}"

    @property
    def per_task_formula(self) -> str:
        return (
            f"({self.total_budget} x 88%) / {self.total_task_count} "
            f"= {self.per_task_amount}"
        )


def budget_breakdown(total_budget: Decimal, total_task_count: int) -> BudgetBreakdown:
    """Compute every nominal amount for a project in one call."""
    return BudgetBreakdown(
        total_budget=round_money(_require_budget(total_budget)),
        total_task_count=total_task_count,
        upfront_amount=upfront_amount(total_budget),
        task_pool=round_money(task_portion_budget(total_budget)),
        per_task_amount=manual_invoice_amount(total_budget, total_task_count),
    )
