"""
Domain events emitted after a payment commits.

Responsibility:
    Names the event types and builds their payloads.  Payloads carry only
    identifiers and amounts (project, task, invoice, parties) so that the
    notification subsystem can enrich them itself.

Architecture position:
    Ledger > Domain.  The EventSink protocol is the outbound port; the
    sinks below are the in-process adapters.  LoggingEventSink is the one
    sink that performs I/O (it writes a log line).

Failure modes:
    Sinks may raise.  The orchestrator treats every emission as best-effort:
    a sink failure is logged and never rolls back a committed payment.
"""

import threading
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord
from completion_ledger.domain.values import InvoiceStatus, InvoiceType
from completion_ledger.logging_config import get_logger

logger = get_logger("domain.events")

UPFRONT_PAID = "completion.upfront_paid"
MANUAL_INVOICE_PAID = "completion.manual_invoice_paid"
FINAL_PAID = "completion.final_paid"
PROJECT_COMPLETED = "completion.project_completed"
FINAL_SETTLEMENT_FAILED = "completion.final_settlement_failed"

PAID_EVENTS = {
    InvoiceType.UPFRONT: UPFRONT_PAID,
    InvoiceType.MANUAL: MANUAL_INVOICE_PAID,
    InvoiceType.FINAL: FINAL_PAID,
}


@runtime_checkable
class EventSink(Protocol):
    """Fire-and-forget consumer of ledger events."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


def build_payment_payload(
    project: ProjectRecord,
    invoice: InvoiceRecord,
) -> dict[str, Any]:
    """Payload for the three payment events."""
    return {
        "project_id": project.project_id,
        "task_id": invoice.task_id,
        "amount": invoice.total_amount,
        "invoice_number": invoice.invoice_number,
        "invoice_type": invoice.invoice_type.value,
        "commissioner_id": project.commissioner_id,
        "freelancer_id": project.freelancer_id,
    }


def build_completion_payload(
    project: ProjectRecord,
    invoice: InvoiceRecord | None,
) -> dict[str, Any]:
    """Payload for completion.project_completed (invoice is None on close-out)."""
    return {
        "project_id": project.project_id,
        "task_id": None,
        "amount": invoice.total_amount if invoice else Decimal("0.00"),
        "invoice_number": invoice.invoice_number if invoice else None,
        "commissioner_id": project.commissioner_id,
        "freelancer_id": project.freelancer_id,
        "project_title": project.title,
    }


def payment_events(
    project: ProjectRecord,
    invoice: InvoiceRecord,
) -> list[tuple[str, dict[str, Any]]]:
    """Events owed for a payment that has been paid (not merely issued)."""
    if invoice.status != InvoiceStatus.PAID:
        return []
    events = [(PAID_EVENTS[invoice.invoice_type], build_payment_payload(project, invoice))]
    if invoice.invoice_type == InvoiceType.FINAL:
        events.append((PROJECT_COMPLETED, build_completion_payload(project, invoice)))
    return events


class LoggingEventSink:
    """Writes every event as a structured log line."""

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info(
            "domain_event_emitted",
            extra={"event_type": event_type, "payload": payload},
        )


class InMemoryEventSink:
    """Keeps events in memory. Used by tests and local tooling."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.events.append((event_type, dict(payload)))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [p for t, p in self.events if t == event_type]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class FanOutEventSink:
    """Delivers each event to several sinks; one failing sink does not starve the rest."""

    def __init__(self, *sinks: EventSink):
        self._sinks = sinks

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event_type, payload)
            except Exception:
                logger.warning(
                    "event_sink_failed",
                    extra={"event_type": event_type, "sink": type(sink).__name__},
                    exc_info=True,
                )


def emit_safely(sink: EventSink | None, event_type: str, payload: dict[str, Any]) -> bool:
    """Emit one event; a failing sink is logged and reported as False."""
    if sink is None:
        return False
    try:
        sink.emit(event_type, payload)
    except Exception:
        logger.warning(
            "event_emit_failed",
            extra={
                "event_type": event_type,
                "project_id": payload.get("project_id"),
                "sink": type(sink).__name__,
            },
            exc_info=True,
        )
        return False
    return True
