"""
Typed Exception Hierarchy for the Completion Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Payment code must handle errors precisely. Callers branch on the exception
type and its ``code`` attribute, never on message text. Every exception
carries its context as structured attributes so it survives logging and
serialization intact.

Eligibility rejections (UPFRONT_ALREADY_PAID, NOT_ALL_TASKS_APPROVED, ...)
are NOT exceptions. They are expected business outcomes and are returned
as ``EligibilityDecision`` values by the eligibility gate.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LedgerError:

    LedgerError (base)
    |
    +-- InputError
    |   +-- InvalidBudgetError
    |   +-- InvalidTaskCountError
    |   +-- InvalidAmountError
    |   +-- RecordShapeError
    |
    +-- NotFoundError
    |   +-- ProjectNotFoundError
    |   +-- TaskNotFoundError
    |   +-- InvoiceNotFoundError
    |
    +-- IntegrityError
    |   +-- BudgetIntegrityError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |   +-- DuplicateInvoiceError
    |   +-- DuplicateIntentError
    |   +-- ConflictRetriesExhaustedError
    |
    +-- StorageError
    |
    +-- SettlementError
        +-- InvoiceNotSettleableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Input        | INVALID_BUDGET              | total budget <= 0
             | INVALID_TASK_COUNT          | task count <= 0
             | INVALID_AMOUNT              | negative or non-numeric amount
             | RECORD_SHAPE                | unknown/missing field in a record
-------------|-----------------------------|-----------------------------------
Not found    | PROJECT_NOT_FOUND           | project id unknown to the store
             | TASK_NOT_FOUND              | task id unknown to the store
             | INVOICE_NOT_FOUND           | invoice number unknown
-------------|-----------------------------|-----------------------------------
Integrity    | BUDGET_INTEGRITY_VIOLATION  | amount would overdraw the budget
-------------|-----------------------------|-----------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT    | project/task version changed
             | DUPLICATE_INVOICE           | uniqueness constraint on invoice
             | DUPLICATE_INTENT            | idempotency key already claimed
             | CONFLICT_RETRIES_EXHAUSTED  | too many lost races in a row
-------------|-----------------------------|-----------------------------------
Storage      | STORAGE_ERROR               | I/O failure inside a store
-------------|-----------------------------|-----------------------------------
Settlement   | INVOICE_NOT_SETTLEABLE      | invoice is not awaiting settlement

===============================================================================
HANDLING PATTERNS
===============================================================================

1. INPUT ERRORS are reported synchronously and never retried.

2. CONCURRENCY ERRORS trigger a full re-run of the payment action starting
   from the eligibility gate. A write is never retried blindly.

3. STORAGE ERRORS on reads are retried a bounded number of times; on
   writes they abort the action and leave any pending intent for the
   recovery sweep.

4. INTEGRITY ERRORS are logged at ERROR level and abort the action with
   nothing committed.
"""

from decimal import Decimal


class LedgerError(Exception):
    """
    Base exception for all completion ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


# Input errors


class InputError(LedgerError):
    """Caller supplied malformed data."""

    code: str = "INPUT_ERROR"


class InvalidBudgetError(InputError):
    """Total budget must be strictly positive."""

    code: str = "INVALID_BUDGET"

    def __init__(self, total_budget: Decimal | str):
        self.total_budget = str(total_budget)
        super().__init__(f"Total budget must be positive, got {total_budget}")


class InvalidTaskCountError(InputError):
    """Task count must be strictly positive."""

    code: str = "INVALID_TASK_COUNT"

    def __init__(self, total_task_count: int):
        self.total_task_count = total_task_count
        super().__init__(
            f"Total task count must be positive, got {total_task_count}"
        )


class InvalidAmountError(InputError):
    """A monetary amount is negative or not a valid decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field_name: str, value: object):
        self.field_name = field_name
        self.value = str(value)
        super().__init__(f"Invalid amount for {field_name}: {value!r}")


class RecordShapeError(InputError):
    """
    A record does not match its closed field list.

    Raised at the store boundary so that ad hoc fields never travel
    downstream.
    """

    code: str = "RECORD_SHAPE"

    def __init__(
        self,
        record_type: str,
        unknown_fields: tuple[str, ...] = (),
        missing_fields: tuple[str, ...] = (),
        detail: str | None = None,
    ):
        self.record_type = record_type
        self.unknown_fields = unknown_fields
        self.missing_fields = missing_fields
        self.detail = detail
        parts = []
        if unknown_fields:
            parts.append(f"unknown fields {sorted(unknown_fields)}")
        if missing_fields:
            parts.append(f"missing fields {sorted(missing_fields)}")
        if detail:
            parts.append(detail)
        super().__init__(f"Malformed {record_type} record: {'; '.join(parts)}")


# Not-found errors


class NotFoundError(LedgerError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class ProjectNotFoundError(NotFoundError):
    """Project with given ID was not found."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class TaskNotFoundError(NotFoundError):
    """Task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvoiceNotFoundError(NotFoundError):
    """Invoice with given number was not found."""

    code: str = "INVOICE_NOT_FOUND"

    def __init__(self, invoice_number: str):
        self.invoice_number = invoice_number
        super().__init__(f"Invoice not found: {invoice_number}")


# Integrity errors


class IntegrityError(LedgerError):
    """Base exception for budget integrity failures."""

    code: str = "INTEGRITY_ERROR"


class BudgetIntegrityError(IntegrityError):
    """
    A payment would break budget conservation.

    This is serious: the eligibility gate allowed the action but the
    independent amount check did not.
    """

    code: str = "BUDGET_INTEGRITY_VIOLATION"

    def __init__(self, project_id: str, proposed_amount: Decimal, errors: list[str]):
        self.project_id = project_id
        self.proposed_amount = str(proposed_amount)
        self.errors = list(errors)
        super().__init__(
            f"Budget integrity violation for project {project_id}: "
            f"{'; '.join(errors)}"
        )


# Concurrency errors


class ConcurrencyError(LedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """
    Concurrent modification detected via version mismatch.

    The record was modified by another transaction between read and write.
    """

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None,
        actual_version: int | None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )


class DuplicateInvoiceError(ConcurrencyError):
    """An invoice violating a uniqueness rule already exists."""

    code: str = "DUPLICATE_INVOICE"

    def __init__(self, invoice_number: str, detail: str | None = None):
        self.invoice_number = invoice_number
        self.detail = detail
        message = f"Duplicate invoice {invoice_number}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DuplicateIntentError(ConcurrencyError):
    """Another caller already claimed this idempotency key attempt."""

    code: str = "DUPLICATE_INTENT"

    def __init__(self, idempotency_key: str, attempt: int):
        self.idempotency_key = idempotency_key
        self.attempt = attempt
        super().__init__(
            f"Payment intent {idempotency_key} attempt {attempt} already exists"
        )


class ConflictRetriesExhaustedError(ConcurrencyError):
    """A payment action lost too many races in a row."""

    code: str = "CONFLICT_RETRIES_EXHAUSTED"

    def __init__(self, idempotency_key: str, attempts: int):
        self.idempotency_key = idempotency_key
        self.attempts = attempts
        super().__init__(
            f"Gave up on {idempotency_key} after {attempts} conflicting attempts"
        )


# Storage errors


class StorageError(LedgerError):
    """
    An I/O failure inside a Project, Task or Invoice store.

    Wraps the underlying driver exception (available as ``__cause__``).
    """

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Settlement errors


class SettlementError(LedgerError):
    """Base exception for payment settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class InvoiceNotSettleableError(SettlementError):
    """Invoice is not in a state that can be settled through the gateway."""

    code: str = "INVOICE_NOT_SETTLEABLE"

    def __init__(self, invoice_number: str, status: str):
        self.invoice_number = invoice_number
        self.status = status
        super().__init__(
            f"Invoice {invoice_number} cannot be settled from status '{status}'"
        )
