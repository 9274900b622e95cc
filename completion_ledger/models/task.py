"""
Module: completion_ledger.models.task
Responsibility: ORM persistence for project tasks.
Architecture position: Ledger > Models.

Invariants enforced:
    - invoice_paid flips to True exactly once, in the same transaction as
      the task's manual invoice.
    - Versioned like Project (version_id_col).
"""

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from completion_ledger.db.base import TrackedBase
from completion_ledger.domain.values import TaskStatus


class ProjectTask(TrackedBase):
    """A unit of deliverable work inside a project."""

    __tablename__ = "completion_tasks"

    __table_args__ = (
        Index("idx_task_project", "project_id"),
    )

    task_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    project_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("completion_projects.project_id"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(4000), nullable=False, default="")

    status: Mapped[TaskStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TaskStatus.ONGOING,
    )

    invoice_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ProjectTask {self.task_id} {self.status} paid={self.invoice_paid}>"
