"""
SQLAlchemy implementation of the store ports.

Responsibility:
    Maps closed records to ORM rows and back, and translates driver errors
    into the ledger's typed exceptions:

        sqlalchemy IntegrityError on invoice insert  -> DuplicateInvoiceError
        sqlalchemy IntegrityError on intent insert   -> DuplicateIntentError
        StaleDataError (version_id_col mismatch)     -> OptimisticLockError
        any other SQLAlchemyError                    -> StorageError

Architecture position:
    Ledger > Stores.  The only module besides services/sequence_service.py
    that issues SQL for the ledger.  Stores flush; only the unit of work
    commits.

Invariants enforced:
    - Project.paid_to_date never decreases (InvalidAmountError).
    - Project.total_budget is never updated (no patch parameter for it).
    - Every read of a mutable row uses populate_existing so a long-lived
      session never serves a stale identity-map copy.
"""

from datetime import datetime
from decimal import Decimal
from functools import wraps

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from completion_ledger.domain.dtos import (
    InvoiceRecord,
    PaymentIntentRecord,
    ProjectRecord,
    TaskRecord,
)
from completion_ledger.domain.values import (
    IntentStatus,
    InvoiceStatus,
    InvoiceType,
    InvoicingMethod,
    ProjectStatus,
    TaskStatus,
)
from completion_ledger.exceptions import (
    DuplicateIntentError,
    DuplicateInvoiceError,
    InvalidAmountError,
    InvoiceNotFoundError,
    LedgerError,
    OptimisticLockError,
    ProjectNotFoundError,
    StorageError,
    TaskNotFoundError,
)
from completion_ledger.logging_config import get_logger
from completion_ledger.models.invoice import Invoice
from completion_ledger.models.payment_intent import PaymentIntent
from completion_ledger.models.project import Project
from completion_ledger.models.task import ProjectTask
from completion_ledger.services.sequence_service import SequenceService
from completion_ledger.stores.base import (
    InvoiceStore,
    LedgerUnitOfWork,
    PaymentIntentStore,
    ProjectStore,
    TaskStore,
    UnitOfWorkFactory,
)

logger = get_logger("stores.sql")


def _storage_errors(operation: str):
    """Translate unexpected driver failures into StorageError."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (LedgerError, IntegrityError, StaleDataError):
                raise
            except SQLAlchemyError as exc:
                logger.warning(
                    "storage_operation_failed",
                    extra={"operation": operation, "error": str(exc)},
                )
                raise StorageError(operation, str(exc)) from exc

        return wrapper

    return decorator


class SqlProjectStore(ProjectStore):
    def __init__(self, session: Session):
        self._session = session

    def _row(self, project_id: str, for_update: bool = False) -> Project | None:
        stmt = select(Project).where(Project.project_id == project_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @_storage_errors("project.read")
    def read(self, project_id: str, for_update: bool = False) -> ProjectRecord | None:
        row = self._row(project_id, for_update)
        return ProjectRecord.from_model(row) if row is not None else None

    @_storage_errors("project.patch")
    def patch(
        self,
        project_id: str,
        *,
        paid_to_date: Decimal | None = None,
        status: ProjectStatus | None = None,
        expected_version: int | None = None,
    ) -> ProjectRecord:
        row = self._row(project_id)
        if row is None:
            raise ProjectNotFoundError(project_id)
        if expected_version is not None and row.version != expected_version:
            raise OptimisticLockError("Project", project_id, expected_version, row.version)

        if paid_to_date is not None:
            if paid_to_date < row.paid_to_date:
                raise InvalidAmountError("paid_to_date", paid_to_date)
            row.paid_to_date = paid_to_date
        if status is not None:
            row.status = ProjectStatus(status).value

        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(
                "Project", project_id, expected_version or row.version, None
            ) from exc
        return ProjectRecord.from_model(row)

    @_storage_errors("project.add")
    def add(self, record: ProjectRecord) -> ProjectRecord:
        row = Project(
            project_id=record.project_id,
            title=record.title,
            total_budget=record.total_budget,
            invoicing_method=record.invoicing_method.value,
            paid_to_date=record.paid_to_date,
            status=record.status.value,
            commissioner_id=record.commissioner_id,
            freelancer_id=record.freelancer_id,
            commissioner_name=record.commissioner_name,
        )
        self._session.add(row)
        self._session.flush()
        return ProjectRecord.from_model(row)

    @_storage_errors("project.list_ids")
    def list_ids(self, invoicing_method: InvoicingMethod | None = None) -> list[str]:
        stmt = select(Project.project_id).order_by(Project.project_id)
        if invoicing_method is not None:
            stmt = stmt.where(
                Project.invoicing_method == InvoicingMethod(invoicing_method).value
            )
        return list(self._session.execute(stmt).scalars())


class SqlTaskStore(TaskStore):
    def __init__(self, session: Session):
        self._session = session

    def _row(self, task_id: str) -> ProjectTask | None:
        return self._session.execute(
            select(ProjectTask)
            .where(ProjectTask.task_id == task_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    @_storage_errors("task.list_by_project")
    def list_by_project(self, project_id: str) -> list[TaskRecord]:
        rows = self._session.execute(
            select(ProjectTask)
            .where(ProjectTask.project_id == project_id)
            .order_by(ProjectTask.task_id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [TaskRecord.from_model(row) for row in rows]

    @_storage_errors("task.get")
    def get(self, task_id: str) -> TaskRecord | None:
        row = self._row(task_id)
        return TaskRecord.from_model(row) if row is not None else None

    @_storage_errors("task.patch")
    def patch(
        self,
        task_id: str,
        *,
        invoice_paid: bool | None = None,
        status: TaskStatus | None = None,
    ) -> TaskRecord:
        row = self._row(task_id)
        if row is None:
            raise TaskNotFoundError(task_id)
        if invoice_paid is not None:
            row.invoice_paid = invoice_paid
        if status is not None:
            row.status = TaskStatus(status).value
        try:
            self._session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError("Task", task_id, row.version, None) from exc
        return TaskRecord.from_model(row)

    @_storage_errors("task.add")
    def add(self, record: TaskRecord) -> TaskRecord:
        row = ProjectTask(
            task_id=record.task_id,
            project_id=record.project_id,
            title=record.title,
            status=record.status.value,
            invoice_paid=record.invoice_paid,
        )
        self._session.add(row)
        self._session.flush()
        return TaskRecord.from_model(row)


class SqlInvoiceStore(InvoiceStore):
    def __init__(self, session: Session):
        self._session = session

    def _row(self, invoice_number: str) -> Invoice | None:
        return self._session.execute(
            select(Invoice)
            .where(Invoice.invoice_number == invoice_number)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _rows(self, stmt) -> list[InvoiceRecord]:
        rows = self._session.execute(
            stmt.order_by(Invoice.issue_date, Invoice.invoice_number)
            .execution_options(populate_existing=True)
        ).scalars()
        return [InvoiceRecord.from_model(row) for row in rows]

    @_storage_errors("invoice.create")
    def create(self, record: InvoiceRecord) -> InvoiceRecord:
        row = Invoice(
            invoice_number=record.invoice_number,
            project_id=record.project_id,
            task_id=record.task_id,
            invoice_type=record.invoice_type.value,
            total_amount=record.total_amount,
            status=record.status.value,
            issue_date=record.issue_date,
            due_date=record.due_date,
            paid_at=record.paid_at,
            transaction_id=record.transaction_id,
            freelancer_amount=record.freelancer_amount,
            platform_fee=record.platform_fee,
            idempotency_key=record.idempotency_key,
        )
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateInvoiceError(record.invoice_number, str(exc.orig)) from exc
        return InvoiceRecord.from_model(row)

    @_storage_errors("invoice.get")
    def get(self, invoice_number: str) -> InvoiceRecord | None:
        row = self._row(invoice_number)
        return InvoiceRecord.from_model(row) if row is not None else None

    @_storage_errors("invoice.list_by_project")
    def list_by_project(
        self,
        project_id: str,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
    ) -> list[InvoiceRecord]:
        stmt = select(Invoice).where(Invoice.project_id == project_id)
        if invoice_type is not None:
            stmt = stmt.where(Invoice.invoice_type == InvoiceType(invoice_type).value)
        if status is not None:
            stmt = stmt.where(Invoice.status == InvoiceStatus(status).value)
        return self._rows(stmt)

    @_storage_errors("invoice.list_by_task")
    def list_by_task(self, task_id: str) -> list[InvoiceRecord]:
        return self._rows(select(Invoice).where(Invoice.task_id == task_id))

    @_storage_errors("invoice.find_by_idempotency_key")
    def find_by_idempotency_key(self, idempotency_key: str) -> list[InvoiceRecord]:
        return self._rows(
            select(Invoice).where(Invoice.idempotency_key == idempotency_key)
        )

    @_storage_errors("invoice.update_status")
    def update_status(
        self,
        invoice_number: str,
        status: InvoiceStatus,
        *,
        paid_at: datetime | None = None,
        transaction_id: str | None = None,
    ) -> InvoiceRecord:
        row = self._row(invoice_number)
        if row is None:
            raise InvoiceNotFoundError(invoice_number)
        row.status = InvoiceStatus(status).value
        if paid_at is not None:
            row.paid_at = paid_at
        if transaction_id is not None:
            row.transaction_id = transaction_id
        if row.status != InvoiceStatus.PROCESSING.value:
            row.settlement_claimed_at = None
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateInvoiceError(invoice_number, str(exc.orig)) from exc
        return InvoiceRecord.from_model(row)

    @_storage_errors("invoice.set_settlement_claim")
    def set_settlement_claim(
        self, invoice_number: str, claimed_at: datetime | None
    ) -> InvoiceRecord:
        row = self._row(invoice_number)
        if row is None:
            raise InvoiceNotFoundError(invoice_number)
        row.settlement_claimed_at = claimed_at
        self._session.flush()
        return InvoiceRecord.from_model(row)

    @_storage_errors("invoice.invoice_numbers_with_prefix")
    def invoice_numbers_with_prefix(self, prefix: str) -> list[str]:
        return list(
            self._session.execute(
                select(Invoice.invoice_number).where(
                    Invoice.invoice_number.startswith(f"{prefix}-", autoescape=True)
                )
            ).scalars()
        )


class SqlPaymentIntentStore(PaymentIntentStore):
    def __init__(self, session: Session):
        self._session = session

    @_storage_errors("intent.open")
    def open(self, record: PaymentIntentRecord) -> PaymentIntentRecord:
        row = PaymentIntent(
            idempotency_key=record.idempotency_key,
            attempt=record.attempt,
            project_id=record.project_id,
            task_id=record.task_id,
            invoice_type=record.invoice_type.value,
            amount=record.amount,
            status=record.status.value,
            invoice_number=record.invoice_number,
            detail=record.detail,
        )
        self._session.add(row)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateIntentError(record.idempotency_key, record.attempt) from exc
        return PaymentIntentRecord.from_model(row)

    @_storage_errors("intent.list_for_key")
    def list_for_key(self, idempotency_key: str) -> list[PaymentIntentRecord]:
        rows = self._session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.idempotency_key == idempotency_key)
            .order_by(PaymentIntent.attempt)
            .execution_options(populate_existing=True)
        ).scalars()
        return [PaymentIntentRecord.from_model(row) for row in rows]

    @_storage_errors("intent.list_pending")
    def list_pending(self) -> list[PaymentIntentRecord]:
        rows = self._session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.status == IntentStatus.PENDING.value)
            .order_by(PaymentIntent.created_at, PaymentIntent.idempotency_key)
            .execution_options(populate_existing=True)
        ).scalars()
        return [PaymentIntentRecord.from_model(row) for row in rows]

    @_storage_errors("intent.resolve")
    def resolve(
        self,
        idempotency_key: str,
        attempt: int,
        status: IntentStatus,
        *,
        resolved_at: datetime,
        invoice_number: str | None = None,
        detail: str | None = None,
    ) -> PaymentIntentRecord:
        row = self._session.execute(
            select(PaymentIntent)
            .where(
                PaymentIntent.idempotency_key == idempotency_key,
                PaymentIntent.attempt == attempt,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()
        row.status = IntentStatus(status).value
        row.resolved_at = resolved_at
        if invoice_number is not None:
            row.invoice_number = invoice_number
        if detail is not None:
            row.detail = detail
        self._session.flush()
        return PaymentIntentRecord.from_model(row)


class SqlUnitOfWork(LedgerUnitOfWork):
    """All stores bound to one SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session
        self.projects = SqlProjectStore(session)
        self.tasks = SqlTaskStore(session)
        self.invoices = SqlInvoiceStore(session)
        self.intents = SqlPaymentIntentStore(session)
        self.sequences = SequenceService(session)

    @_storage_errors("commit")
    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def close(self) -> None:
        self.session.close()


def sql_unit_of_work_factory(session_factory: sessionmaker[Session]) -> UnitOfWorkFactory:
    """Each call opens a fresh session; one per thread, one per attempt."""

    def factory() -> SqlUnitOfWork:
        return SqlUnitOfWork(session_factory())

    return factory
