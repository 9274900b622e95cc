"""ORM models for the completion ledger."""

from completion_ledger.models.invoice import Invoice
from completion_ledger.models.payment_intent import PaymentIntent
from completion_ledger.models.project import Project
from completion_ledger.models.sequence import SequenceCounter
from completion_ledger.models.task import ProjectTask

__all__ = [
    "Project",
    "ProjectTask",
    "Invoice",
    "PaymentIntent",
    "SequenceCounter",
]
