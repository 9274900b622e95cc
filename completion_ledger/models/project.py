"""
Module: completion_ledger.models.project
Responsibility: ORM persistence for projects.
Architecture position: Ledger > Models.  May import from db/ and
    domain/values.py only.

Invariants enforced:
    - total_budget > 0 and paid_to_date >= 0 (CHECK constraints).
    - Optimistic concurrency: every UPDATE bumps ``version`` and is
      conditional on the version read (SQLAlchemy version_id_col).  A lost
      race surfaces as StaleDataError, translated to OptimisticLockError by
      the SQL store.

Failure modes:
    - IntegrityError on duplicate project_id or CHECK violation.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from completion_ledger.db.base import TrackedBase
from completion_ledger.domain.values import InvoicingMethod, ProjectStatus


class Project(TrackedBase):
    """
    A marketplace project and its budget counters.

    Contract:
        total_budget is written once at creation.  paid_to_date is written
        only by the payment orchestrator and the recovery sweep.
    """

    __tablename__ = "completion_projects"

    __table_args__ = (
        CheckConstraint("total_budget > 0", name="ck_project_budget_positive"),
        CheckConstraint("paid_to_date >= 0", name="ck_project_paid_non_negative"),
    )

    project_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    title: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    total_budget: Mapped[Decimal] = mapped_column(nullable=False)

    invoicing_method: Mapped[InvoicingMethod] = mapped_column(
        String(20),
        nullable=False,
        default=InvoicingMethod.COMPLETION,
    )

    paid_to_date: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    status: Mapped[ProjectStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ProjectStatus.PROPOSED,
    )

    # Parties, used to enrich events and derive invoice prefixes
    commissioner_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    freelancer_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    commissioner_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Project {self.project_id} {self.status} "
            f"{self.paid_to_date}/{self.total_budget}>"
        )
