"""
Store interfaces -- the persistence ports the ledger consumes.

Responsibility:
    Declares the Project, Task, Invoice and PaymentIntent stores, the
    sequence allocator behind invoice numbers, and the unit of work that
    groups them into one transaction.  Every method speaks in closed
    records (domain/dtos.py), never in ORM rows or raw mappings.

Architecture position:
    Ledger > Stores.  Services depend on these ABCs only; stores/sql.py is
    the SQLAlchemy implementation.  Hosts may supply their own.

Contract for implementations:
    - I/O failures surface as StorageError (original exception chained).
    - ProjectStore.patch enforces optimistic concurrency and raises
      OptimisticLockError on a version mismatch.
    - InvoiceStore.create enforces invoice_number uniqueness and the
      one-live-invoice-per-slot rule, raising DuplicateInvoiceError.
    - Nothing is durable until LedgerUnitOfWork.commit().
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

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


class ProjectStore(ABC):
    @abstractmethod
    def read(self, project_id: str, for_update: bool = False) -> ProjectRecord | None:
        """Current project, or None.  ``for_update`` locks the row where supported."""

    @abstractmethod
    def patch(
        self,
        project_id: str,
        *,
        paid_to_date: Decimal | None = None,
        status: ProjectStatus | None = None,
        expected_version: int | None = None,
    ) -> ProjectRecord:
        """
        Update paid_to_date and/or status; never replaces the record.

        Raises:
            ProjectNotFoundError: unknown project.
            OptimisticLockError: version differs from ``expected_version``
                or changed underneath the write.
            InvalidAmountError: paid_to_date would decrease.
        """

    @abstractmethod
    def add(self, record: ProjectRecord) -> ProjectRecord:
        ...

    @abstractmethod
    def list_ids(self, invoicing_method: InvoicingMethod | None = None) -> list[str]:
        ...


class TaskStore(ABC):
    @abstractmethod
    def list_by_project(self, project_id: str) -> list[TaskRecord]:
        ...

    @abstractmethod
    def get(self, task_id: str) -> TaskRecord | None:
        ...

    @abstractmethod
    def patch(
        self,
        task_id: str,
        *,
        invoice_paid: bool | None = None,
        status: TaskStatus | None = None,
    ) -> TaskRecord:
        """
        Raises:
            TaskNotFoundError: unknown task.
        """

    @abstractmethod
    def add(self, record: TaskRecord) -> TaskRecord:
        ...


class InvoiceStore(ABC):
    @abstractmethod
    def create(self, record: InvoiceRecord) -> InvoiceRecord:
        """
        Raises:
            DuplicateInvoiceError: number taken, or the live slot for this
                project type / task is already held.
        """

    @abstractmethod
    def get(self, invoice_number: str) -> InvoiceRecord | None:
        ...

    @abstractmethod
    def list_by_project(
        self,
        project_id: str,
        invoice_type: InvoiceType | None = None,
        status: InvoiceStatus | None = None,
    ) -> list[InvoiceRecord]:
        ...

    @abstractmethod
    def list_by_task(self, task_id: str) -> list[InvoiceRecord]:
        ...

    @abstractmethod
    def find_by_idempotency_key(self, idempotency_key: str) -> list[InvoiceRecord]:
        ...

    @abstractmethod
    def update_status(
        self,
        invoice_number: str,
        status: InvoiceStatus,
        *,
        paid_at: datetime | None = None,
        transaction_id: str | None = None,
    ) -> InvoiceRecord:
        """
        Raises:
            InvoiceNotFoundError: unknown invoice number.
        """

    @abstractmethod
    def set_settlement_claim(
        self, invoice_number: str, claimed_at: datetime | None
    ) -> InvoiceRecord:
        """
        Claim the invoice for one gateway call (None releases the claim).

        Raises:
            InvoiceNotFoundError: unknown invoice number.
        """

    @abstractmethod
    def invoice_numbers_with_prefix(self, prefix: str) -> list[str]:
        ...


class PaymentIntentStore(ABC):
    @abstractmethod
    def open(self, record: PaymentIntentRecord) -> PaymentIntentRecord:
        """
        Raises:
            DuplicateIntentError: (idempotency_key, attempt) already exists.
        """

    @abstractmethod
    def list_for_key(self, idempotency_key: str) -> list[PaymentIntentRecord]:
        """All attempts for a key, oldest first."""

    @abstractmethod
    def list_pending(self) -> list[PaymentIntentRecord]:
        ...

    @abstractmethod
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
        ...


class SequenceAllocator(ABC):
    @abstractmethod
    def next_value(self, sequence_name: str) -> int:
        ...

    @abstractmethod
    def current_value(self, sequence_name: str) -> int | None:
        ...

    @abstractmethod
    def reset(self, sequence_name: str, value: int = 0) -> None:
        ...

    @abstractmethod
    def ensure_at_least(self, sequence_name: str, value: int) -> int:
        """Raise the counter to ``value`` when lower; return the current value."""


class LedgerUnitOfWork(ABC):
    """
    One transaction over every store.

    Use as a context manager.  Work is rolled back unless ``commit()`` was
    called; the underlying connection is always released on exit.
    """

    projects: ProjectStore
    tasks: TaskStore
    invoices: InvoiceStore
    intents: PaymentIntentStore
    sequences: SequenceAllocator

    @abstractmethod
    def commit(self) -> None:
        ...

    @abstractmethod
    def rollback(self) -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self) -> "LedgerUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.rollback()
        finally:
            self.close()


UnitOfWorkFactory = Callable[[], LedgerUnitOfWork]
