"""
Payment gateway port.

The ledger's job ends at "invoice created and marked payable".  Moving
money is an external collaborator reached through ``PaymentGateway``.  The
gateway is only ever called with no project lock held.
"""

import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of one execute() call."""

    success: bool
    transaction_id: str | None = None
    message: str | None = None


@runtime_checkable
class PaymentGateway(Protocol):
    def execute(self, invoice_number: str, amount: Decimal) -> GatewayResult:
        ...


class MockPaymentGateway:
    """
    Deterministic in-process gateway.

    Transaction ids are ``TXN-{invoice_number}-{n}`` where n counts calls.
    Invoices listed in ``fail_invoices`` fail until removed; ``fail_next``
    fails that many upcoming calls regardless of invoice.
    """

    def __init__(
        self,
        fail_invoices: set[str] | None = None,
        fail_next: int = 0,
    ):
        self._lock = threading.Lock()
        self.fail_invoices = set(fail_invoices or ())
        self.fail_next = fail_next
        self.calls: list[tuple[str, Decimal]] = []

    def execute(self, invoice_number: str, amount: Decimal) -> GatewayResult:
        with self._lock:
            self.calls.append((invoice_number, amount))
            if self.fail_next > 0:
                self.fail_next -= 1
                return GatewayResult(success=False, message="Gateway declined")
            if invoice_number in self.fail_invoices:
                return GatewayResult(success=False, message="Gateway declined")
            return GatewayResult(
                success=True,
                transaction_id=f"TXN-{invoice_number}-{len(self.calls)}",
                message="Payment executed",
            )
