"""
DTOs -- Closed record types that cross the store boundary.

Responsibility:
    Defines ProjectRecord, TaskRecord and InvoiceRecord: immutable, tagged
    records with exhaustive field lists.  Every record entering the ledger
    goes through ``from_mapping`` (external data) or ``from_model`` (ORM
    rows), so ad hoc fields never travel downstream.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.
    from_model() class methods are boundary converters invoked only from
    the store layer.

Invariants enforced:
    - Closed shapes: unknown keys are rejected with RecordShapeError.
    - Money fields are Decimal rounded to 2 places; never float.
    - Timestamps are timezone-aware (naive values are taken as UTC).

Failure modes:
    - RecordShapeError on unknown/missing keys or an out-of-vocabulary
      status, type or method.
    - InvalidAmountError on a non-numeric or float amount.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from completion_ledger.db.types import money_from_value
from completion_ledger.domain.values import (
    IntentStatus,
    InvoiceStatus,
    InvoiceType,
    InvoicingMethod,
    ProjectStatus,
    TaskStatus,
)
from completion_ledger.exceptions import RecordShapeError

if TYPE_CHECKING:
    from completion_ledger.models.invoice import Invoice as InvoiceModel
    from completion_ledger.models.payment_intent import PaymentIntent as PaymentIntentModel
    from completion_ledger.models.project import Project as ProjectModel
    from completion_ledger.models.task import ProjectTask as TaskModel


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_shape(record_type: str, cls: type, data: Mapping[str, Any]) -> None:
    declared = {f.name for f in fields(cls)}
    required = {
        f.name
        for f in fields(cls)
        if f.default is MISSING and f.default_factory is MISSING
    }
    unknown = tuple(sorted(set(data) - declared))
    missing = tuple(sorted(required - set(data)))
    if unknown or missing:
        raise RecordShapeError(record_type, unknown, missing)


def _enum(record_type: str, enum_cls: type[Enum], value: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise RecordShapeError(
            record_type,
            detail=f"{value!r} is not a valid {enum_cls.__name__}",
        ) from None


def _timestamp(record_type: str, name: str, value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return _aware(value)
    if isinstance(value, str):
        try:
            return _aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    raise RecordShapeError(record_type, detail=f"{name} is not a timestamp: {value!r}")


def _identifier(value: Any) -> str:
    # Ids may arrive as numbers from legacy JSON
    return str(value)


@dataclass(frozen=True)
class ProjectRecord:
    """A project as the ledger sees it."""

    project_id: str
    total_budget: Decimal
    invoicing_method: InvoicingMethod
    status: ProjectStatus
    paid_to_date: Decimal = Decimal("0.00")
    version: int = 0
    title: str = ""
    commissioner_id: str | None = None
    freelancer_id: str | None = None
    commissioner_name: str | None = None

    @property
    def is_completion(self) -> bool:
        return self.invoicing_method == InvoicingMethod.COMPLETION

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProjectRecord:
        _check_shape("ProjectRecord", cls, data)
        return cls(
            project_id=_identifier(data["project_id"]),
            total_budget=money_from_value(data["total_budget"], "total_budget"),
            invoicing_method=_enum(
                "ProjectRecord", InvoicingMethod, data["invoicing_method"]
            ),
            status=_enum("ProjectRecord", ProjectStatus, data["status"]),
            paid_to_date=money_from_value(
                data.get("paid_to_date", Decimal("0")), "paid_to_date"
            ),
            version=int(data.get("version", 0)),
            title=str(data.get("title") or ""),
            commissioner_id=_optional_id(data.get("commissioner_id")),
            freelancer_id=_optional_id(data.get("freelancer_id")),
            commissioner_name=data.get("commissioner_name"),
        )

    @classmethod
    def from_model(cls, model: ProjectModel) -> ProjectRecord:
        return cls(
            project_id=model.project_id,
            total_budget=money_from_value(model.total_budget, "total_budget"),
            invoicing_method=InvoicingMethod(model.invoicing_method),
            status=ProjectStatus(model.status),
            paid_to_date=money_from_value(model.paid_to_date, "paid_to_date"),
            version=model.version,
            title=model.title,
            commissioner_id=model.commissioner_id,
            freelancer_id=model.freelancer_id,
            commissioner_name=model.commissioner_name,
        )


@dataclass(frozen=True)
class TaskRecord:
    """A billable task inside one project."""

    task_id: str
    project_id: str
    status: TaskStatus
    title: str = ""
    invoice_paid: bool = False
    version: int = 0

    @property
    def is_approved(self) -> bool:
        return self.status == TaskStatus.APPROVED

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> TaskRecord:
        _check_shape("TaskRecord", cls, data)
        invoice_paid = data.get("invoice_paid", False)
        if not isinstance(invoice_paid, bool):
            raise RecordShapeError(
                "TaskRecord", detail=f"invoice_paid must be a bool, got {invoice_paid!r}"
            )
        return cls(
            task_id=_identifier(data["task_id"]),
            project_id=_identifier(data["project_id"]),
            status=_enum("TaskRecord", TaskStatus, data["status"]),
            title=str(data.get("title") or ""),
            invoice_paid=invoice_paid,
            version=int(data.get("version", 0)),
        )

    @classmethod
    def from_model(cls, model: TaskModel) -> TaskRecord:
        return cls(
            task_id=model.task_id,
            project_id=model.project_id,
            status=TaskStatus(model.status),
            title=model.title,
            invoice_paid=bool(model.invoice_paid),
            version=model.version,
        )


@dataclass(frozen=True)
class InvoiceRecord:
    """An invoice issued against a project (and, for manual invoices, a task)."""

    invoice_number: str
    project_id: str
    invoice_type: InvoiceType
    total_amount: Decimal
    status: InvoiceStatus
    issue_date: datetime
    due_date: datetime
    task_id: str | None = None
    paid_at: datetime | None = None
    transaction_id: str | None = None
    freelancer_amount: Decimal | None = None
    platform_fee: Decimal | None = None
    idempotency_key: str | None = None
    settlement_claimed_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        """Counts against the budget (anything but void)."""
        return self.status != InvoiceStatus.VOID

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> InvoiceRecord:
        _check_shape("InvoiceRecord", cls, data)
        total_amount = money_from_value(data["total_amount"], "total_amount")
        if total_amount <= 0:
            raise RecordShapeError(
                "InvoiceRecord", detail=f"total_amount must be positive, got {total_amount}"
            )
        return cls(
            invoice_number=str(data["invoice_number"]),
            project_id=_identifier(data["project_id"]),
            invoice_type=_enum("InvoiceRecord", InvoiceType, data["invoice_type"]),
            total_amount=total_amount,
            status=_enum("InvoiceRecord", InvoiceStatus, data["status"]),
            issue_date=_timestamp("InvoiceRecord", "issue_date", data["issue_date"]),
            due_date=_timestamp("InvoiceRecord", "due_date", data["due_date"]),
            task_id=_optional_id(data.get("task_id")),
            paid_at=_timestamp("InvoiceRecord", "paid_at", data.get("paid_at")),
            transaction_id=data.get("transaction_id"),
            freelancer_amount=_optional_money(data.get("freelancer_amount"), "freelancer_amount"),
            platform_fee=_optional_money(data.get("platform_fee"), "platform_fee"),
            idempotency_key=data.get("idempotency_key"),
            settlement_claimed_at=_timestamp(
                "InvoiceRecord", "settlement_claimed_at", data.get("settlement_claimed_at")
            ),
        )

    @classmethod
    def from_model(cls, model: InvoiceModel) -> InvoiceRecord:
        return cls(
            invoice_number=model.invoice_number,
            project_id=model.project_id,
            invoice_type=InvoiceType(model.invoice_type),
            total_amount=money_from_value(model.total_amount, "total_amount"),
            status=InvoiceStatus(model.status),
            issue_date=_aware(model.issue_date),
            due_date=_aware(model.due_date),
            task_id=model.task_id,
            paid_at=_aware(model.paid_at),
            transaction_id=model.transaction_id,
            freelancer_amount=_optional_money(model.freelancer_amount, "freelancer_amount"),
            platform_fee=_optional_money(model.platform_fee, "platform_fee"),
            idempotency_key=model.idempotency_key,
            settlement_claimed_at=_aware(model.settlement_claimed_at),
        )


def _optional_id(value: Any) -> str | None:
    return None if value is None else _identifier(value)


def _optional_money(value: Any, name: str) -> Decimal | None:
    return None if value is None else money_from_value(value, name)


@dataclass(frozen=True)
class PaymentIntentRecord:
    """Write-ahead marker for one attempt at one payment action."""

    idempotency_key: str
    attempt: int
    project_id: str
    invoice_type: InvoiceType
    amount: Decimal
    status: IntentStatus = IntentStatus.PENDING
    task_id: str | None = None
    invoice_number: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    detail: str | None = None

    @classmethod
    def from_model(cls, model: PaymentIntentModel) -> PaymentIntentRecord:
        return cls(
            idempotency_key=model.idempotency_key,
            attempt=model.attempt,
            project_id=model.project_id,
            invoice_type=InvoiceType(model.invoice_type),
            amount=money_from_value(model.amount, "amount"),
            status=IntentStatus(model.status),
            task_id=model.task_id,
            invoice_number=model.invoice_number,
            created_at=_aware(model.created_at),
            resolved_at=_aware(model.resolved_at),
            detail=model.detail,
        )
