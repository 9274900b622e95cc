"""
InvoiceNumberService -- allocates ``{INITIALS}-{NNN}`` invoice numbers.

Responsibility:
    Derives the prefix from the commissioner's name (configured fallback
    when unknown), takes the next value of that prefix's counter and
    returns a number no existing invoice carries.

Architecture position:
    Ledger > Services.  Runs inside the payment unit of work, so a rolled
    back payment also returns its counter value.

Invariants enforced:
    - Invoice numbers are unique.  A counter created after invoices were
      imported is first seeded from the highest number already issued
      under its prefix; numbers that still collide are skipped.
"""

from completion_ledger.domain.invoice_numbering import (
    format_invoice_number,
    invoice_prefix,
    sequence_name,
    sequence_of,
)
from completion_ledger.logging_config import get_logger
from completion_ledger.stores.base import InvoiceStore, SequenceAllocator

logger = get_logger("services.invoice_number")

_MAX_SKIPS = 100


class InvoiceNumberService:
    def __init__(
        self,
        sequences: SequenceAllocator,
        invoices: InvoiceStore,
        fallback_prefix: str = "COMP",
    ):
        self._sequences = sequences
        self._invoices = invoices
        self._fallback = fallback_prefix

    def allocate(self, commissioner_name: str | None) -> str:
        prefix = invoice_prefix(commissioner_name, self._fallback)
        name = sequence_name(prefix)

        if self._sequences.current_value(name) is None:
            self._seed(prefix, name)

        for _ in range(_MAX_SKIPS):
            number = format_invoice_number(prefix, self._sequences.next_value(name))
            if self._invoices.get(number) is None:
                return number
            logger.warning(
                "invoice_number_skipped",
                extra={"invoice_number": number, "prefix": prefix},
            )
        raise RuntimeError(f"Could not allocate a free invoice number for prefix {prefix}")

    def _seed(self, prefix: str, name: str) -> None:
        issued = [
            seq
            for seq in (
                sequence_of(number, prefix)
                for number in self._invoices.invoice_numbers_with_prefix(prefix)
            )
            if seq is not None
        ]
        if issued:
            self._sequences.ensure_at_least(name, max(issued))
