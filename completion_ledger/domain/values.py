"""
Values -- closed vocabularies of the completion ledger.

Responsibility:
    Declares every enumerated value that appears in a record, a table row
    or an idempotency key.  All enums are ``str`` mixins so that their
    values compare equal to the raw strings stored in the database.

Architecture position:
    Ledger > Domain -- pure, zero I/O.  Imported by models/, stores/,
    services/ and selectors/.
"""

from enum import Enum


class InvoicingMethod(str, Enum):
    """How a project is billed. Only COMPLETION projects use this ledger."""

    COMPLETION = "completion"
    MILESTONE = "milestone"


class ProjectStatus(str, Enum):
    """Project lifecycle status."""

    PROPOSED = "proposed"
    ONGOING = "ongoing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskStatus(str, Enum):
    """Task review status. Values match the marketplace's display strings."""

    ONGOING = "Ongoing"
    SUBMITTED = "Submitted"
    IN_REVIEW = "In review"
    REJECTED = "Rejected"
    APPROVED = "Approved"


class InvoiceType(str, Enum):
    """The three completion payment types."""

    UPFRONT = "completion_upfront"
    MANUAL = "completion_manual"
    FINAL = "completion_final"


class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle status.

    Every status except VOID counts against the budget; ``processing``
    marks a final invoice awaiting gateway settlement.
    """

    DRAFT = "draft"
    SENT = "sent"
    PROCESSING = "processing"
    PAID = "paid"
    VOID = "void"


class IntentStatus(str, Enum):
    """Write-ahead payment intent status."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


# Project statuses in which each payment type may be issued
UPFRONT_PAYABLE_STATUSES: frozenset[ProjectStatus] = frozenset(
    {ProjectStatus.PROPOSED, ProjectStatus.ONGOING}
)
TASK_PAYABLE_STATUSES: frozenset[ProjectStatus] = frozenset(
    {ProjectStatus.ONGOING, ProjectStatus.PAUSED}
)
