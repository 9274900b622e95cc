"""
Tests for domain event payloads and sinks.

Verifies:
- Only paid invoices owe events; a paid final also completes the project
- Payloads carry identifiers and amounts for self-enrichment
- A failing sink is logged and never raises to the caller
- FanOutEventSink keeps delivering after one sink fails
"""

from decimal import Decimal

from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord
from completion_ledger.domain.events import (
    FINAL_PAID,
    PROJECT_COMPLETED,
    UPFRONT_PAID,
    FanOutEventSink,
    InMemoryEventSink,
    LoggingEventSink,
    build_completion_payload,
    emit_safely,
    payment_events,
)


class ExplodingSink:
    def emit(self, event_type, payload):
        raise RuntimeError("notification store offline")


def project():
    return ProjectRecord.from_mapping(
        {
            "project_id": "proj-1",
            "total_budget": "5000",
            "invoicing_method": "completion",
            "status": "ongoing",
            "title": "Brand refresh",
            "commissioner_id": "31",
            "freelancer_id": "7",
        }
    )


def invoice(invoice_type="completion_upfront", status="paid", amount="600"):
    return InvoiceRecord.from_mapping(
        {
            "invoice_number": "NM-001",
            "project_id": "proj-1",
            "invoice_type": invoice_type,
            "total_amount": amount,
            "status": status,
            "issue_date": "2024-03-01T09:00:00Z",
            "due_date": "2024-03-15T09:00:00Z",
        }
    )


class TestPaymentEvents:
    def test_upfront(self):
        [(event_type, payload)] = payment_events(project(), invoice())

        assert event_type == UPFRONT_PAID
        assert payload["project_id"] == "proj-1"
        assert payload["task_id"] is None
        assert payload["amount"] == Decimal("600.00")
        assert payload["invoice_number"] == "NM-001"
        assert payload["commissioner_id"] == "31"
        assert payload["freelancer_id"] == "7"

    def test_paid_final_completes_project(self):
        events = payment_events(project(), invoice("completion_final", amount="3300"))
        assert [t for t, _ in events] == [FINAL_PAID, PROJECT_COMPLETED]

    def test_processing_invoice_owes_nothing(self):
        assert payment_events(project(), invoice("completion_final", "processing")) == []

    def test_close_out_payload(self):
        payload = build_completion_payload(project(), None)
        assert payload["invoice_number"] is None
        assert payload["amount"] == Decimal("0.00")
        assert payload["project_title"] == "Brand refresh"


class TestSinks:
    def test_in_memory_filters_by_type(self):
        sink = InMemoryEventSink()
        sink.emit(UPFRONT_PAID, {"project_id": "proj-1"})
        sink.emit(FINAL_PAID, {"project_id": "proj-1"})

        assert sink.of_type(FINAL_PAID) == [{"project_id": "proj-1"}]
        sink.clear()
        assert sink.events == []

    def test_emit_safely_swallows_failure(self, captured_logs):
        assert emit_safely(ExplodingSink(), UPFRONT_PAID, {"project_id": "proj-1"}) is False

        [record] = [r for r in captured_logs() if r["message"] == "event_emit_failed"]
        assert record["event_type"] == UPFRONT_PAID
        assert record["sink"] == "ExplodingSink"

    def test_emit_safely_without_sink(self):
        assert emit_safely(None, UPFRONT_PAID, {}) is False

    def test_fan_out_continues_after_failure(self, captured_logs):
        memory = InMemoryEventSink()
        sink = FanOutEventSink(ExplodingSink(), memory)

        assert emit_safely(sink, UPFRONT_PAID, {"project_id": "proj-1"}) is True

        assert memory.of_type(UPFRONT_PAID) == [{"project_id": "proj-1"}]
        assert any(r["message"] == "event_sink_failed" for r in captured_logs())

    def test_logging_sink(self, captured_logs):
        LoggingEventSink().emit(UPFRONT_PAID, {"amount": Decimal("600.00")})

        [record] = [r for r in captured_logs() if r["message"] == "domain_event_emitted"]
        assert record["payload"] == {"amount": "600.00"}
