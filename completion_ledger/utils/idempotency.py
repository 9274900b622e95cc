"""
Idempotency key generation utilities.

Idempotency keys collapse duplicate requests for the same logical payment
into one effect.  Upfront and final payments are keyed by project, manual
payments by task.
"""

from completion_ledger.domain.values import InvoiceType


def generate_idempotency_key(
    invoice_type: InvoiceType,
    project_id: str,
    task_id: str | None = None,
) -> str:
    """
    Generate the idempotency key for a payment action.

    Format: ``project:{project_id}:{invoice_type}`` for upfront and final
    payments, ``task:{task_id}:{invoice_type}`` for manual payments.

    Raises:
        ValueError: task_id missing for a manual payment, or given for a
            project-level payment.

    Example:
        >>> generate_idempotency_key(InvoiceType.UPFRONT, "p-1")
        'project:p-1:completion_upfront'
    """
    invoice_type = InvoiceType(invoice_type)
    if invoice_type == InvoiceType.MANUAL:
        if task_id is None:
            raise ValueError("Manual payments are keyed by task_id")
        return f"task:{task_id}:{invoice_type.value}"
    if task_id is not None:
        raise ValueError(f"{invoice_type.value} payments are keyed by project only")
    return f"project:{project_id}:{invoice_type.value}"


def parse_idempotency_key(key: str) -> tuple[str, str, InvoiceType]:
    """
    Parse an idempotency key into (scope, subject_id, invoice_type).

    The subject id may itself contain colons.

    Raises:
        ValueError: If key format is invalid.
    """
    scope, _, rest = key.partition(":")
    subject_id, _, type_value = rest.rpartition(":")
    if scope not in ("project", "task") or not subject_id:
        raise ValueError(f"Invalid idempotency key format: {key}")
    try:
        invoice_type = InvoiceType(type_value)
    except ValueError:
        raise ValueError(f"Invalid idempotency key format: {key}") from None
    return scope, subject_id, invoice_type
