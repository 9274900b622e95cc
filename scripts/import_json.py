#!/usr/bin/env python3
"""
Import projects, tasks and invoices from the marketplace's JSON exports.

Reads ``projects.json``, ``project-tasks.json`` and ``invoices.json`` (plus
an optional ``users.json`` for commissioner names), maps their camelCase
fields onto the ledger's closed records and writes them in one
transaction.  Only completion-invoiced projects and completion invoice
types are imported.  Numbers are parsed as Decimal, never float.

Usage:
    python scripts/import_json.py data/ [--users data/users.json] [--strict] [--dry-run]

With ``--strict`` any exported field the ledger does not model is an
error instead of being dropped.  After import, invoice-number counters
are raised past the highest imported number per prefix.
"""

import argparse
import json
import sys
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from completion_ledger.db.engine import create_tables
from completion_ledger.domain.dtos import InvoiceRecord, ProjectRecord, TaskRecord
from completion_ledger.domain.invoice_numbering import sequence_name, sequence_of
from completion_ledger.domain.values import InvoiceType, InvoicingMethod
from completion_ledger.exceptions import LedgerError, RecordShapeError
from ledger_config import get_active_settings
from ledger_config.bridges import build_unit_of_work_factory, configure_logging_from_settings

PROJECT_FIELDS = {
    "projectId": "project_id",
    "title": "title",
    "totalBudget": "total_budget",
    "invoicingMethod": "invoicing_method",
    "paidToDate": "paid_to_date",
    "status": "status",
    "commissionerId": "commissioner_id",
    "freelancerId": "freelancer_id",
}

TASK_FIELDS = {
    "id": "task_id",
    "taskId": "task_id",
    "projectId": "project_id",
    "title": "title",
    "status": "status",
    "invoicePaid": "invoice_paid",
}

INVOICE_FIELDS = {
    "invoiceNumber": "invoice_number",
    "projectId": "project_id",
    "taskId": "task_id",
    "invoiceType": "invoice_type",
    "totalAmount": "total_amount",
    "status": "status",
    "issueDate": "issue_date",
    "dueDate": "due_date",
    "paidDate": "paid_at",
    "paidAt": "paid_at",
}

PAYMENT_DETAIL_FIELDS = {
    "transactionId": "transaction_id",
    "freelancerAmount": "freelancer_amount",
    "platformFee": "platform_fee",
}

COMPLETION_TYPES = {t.value for t in InvoiceType}


def load_json(path: Path) -> list:
    with open(path) as f:
        data = json.load(f, parse_float=Decimal)
    if isinstance(data, dict):
        # Some exports wrap the list: {"projects": [...]}
        lists = [v for v in data.values() if isinstance(v, list)]
        if len(lists) != 1:
            raise ValueError(f"{path}: expected a list of records")
        data = lists[0]
    return data


def project_fields(
    record_type: str,
    raw: dict,
    mapping: dict[str, str],
    strict: bool,
) -> dict:
    """camelCase export record -> snake_case mapping for from_mapping()."""
    unmapped = sorted(k for k in raw if k not in mapping and k != "paymentDetails")
    if strict and unmapped:
        raise RecordShapeError(record_type, unknown_fields=tuple(unmapped))
    out = {}
    for key, name in mapping.items():
        if key in raw and raw[key] is not None:
            out[name] = raw[key]
    return out


def to_project(raw: dict, names: dict[str, str], strict: bool) -> ProjectRecord:
    data = project_fields("ProjectRecord", raw, PROJECT_FIELDS, strict)
    data["status"] = str(data.get("status", "ongoing")).lower()
    data.setdefault("invoicing_method", InvoicingMethod.MILESTONE.value)
    commissioner = data.get("commissioner_id")
    if commissioner is not None and str(commissioner) in names:
        data["commissioner_name"] = names[str(commissioner)]
    return ProjectRecord.from_mapping(data)


def to_task(raw: dict, strict: bool) -> TaskRecord:
    return TaskRecord.from_mapping(project_fields("TaskRecord", raw, TASK_FIELDS, strict))


def to_invoice(raw: dict, strict: bool) -> InvoiceRecord:
    data = project_fields("InvoiceRecord", raw, INVOICE_FIELDS, strict)
    details = raw.get("paymentDetails") or {}
    for key, name in PAYMENT_DETAIL_FIELDS.items():
        if details.get(key) is not None:
            data[name] = details[key]
    data["status"] = str(data.get("status", "")).lower()
    data.setdefault("due_date", data.get("issue_date"))
    return InvoiceRecord.from_mapping(data)


def load_names(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    return {
        str(user["id"]): user["name"]
        for user in load_json(path)
        if user.get("id") is not None and user.get("name")
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Import marketplace JSON exports")
    parser.add_argument("data_dir", type=Path, help="Directory holding the JSON exports")
    parser.add_argument("--users", type=Path, help="users.json for commissioner names")
    parser.add_argument("--settings", type=Path, help="Settings YAML file")
    parser.add_argument("--strict", action="store_true", help="Reject unmodelled fields")
    parser.add_argument("--dry-run", action="store_true", help="Validate without writing")
    args = parser.parse_args()

    settings = get_active_settings(args.settings)
    configure_logging_from_settings(settings)
    names = load_names(args.users)

    errors: list[str] = []
    projects: list[ProjectRecord] = []
    for raw in load_json(args.data_dir / "projects.json"):
        try:
            project = to_project(raw, names, args.strict)
        except (LedgerError, KeyError) as exc:
            errors.append(f"project {raw.get('projectId')}: {exc}")
            continue
        if project.is_completion:
            projects.append(project)
    project_ids = {p.project_id for p in projects}

    tasks: list[TaskRecord] = []
    for raw in load_json(args.data_dir / "project-tasks.json"):
        if str(raw.get("projectId")) not in project_ids:
            continue
        try:
            tasks.append(to_task(raw, args.strict))
        except (LedgerError, KeyError) as exc:
            errors.append(f"task {raw.get('id') or raw.get('taskId')}: {exc}")

    invoices: list[InvoiceRecord] = []
    for raw in load_json(args.data_dir / "invoices.json"):
        if raw.get("invoiceType") not in COMPLETION_TYPES:
            continue
        if str(raw.get("projectId")) not in project_ids:
            continue
        try:
            invoices.append(to_invoice(raw, args.strict))
        except (LedgerError, KeyError) as exc:
            errors.append(f"invoice {raw.get('invoiceNumber')}: {exc}")

    for error in errors:
        print(f"  ERROR: {error}", file=sys.stderr)
    print(f"Parsed {len(projects)} project(s), {len(tasks)} task(s), {len(invoices)} invoice(s)")
    if errors:
        print(f"{len(errors)} record(s) rejected; nothing written", file=sys.stderr)
        return 1
    if args.dry_run:
        return 0

    uow_factory = build_unit_of_work_factory(settings)
    create_tables()
    with uow_factory() as uow:
        for project in projects:
            uow.projects.add(project)
        for task in tasks:
            uow.tasks.add(task)
        for invoice in invoices:
            uow.invoices.create(invoice)

        highest: dict[str, int] = {}
        for invoice in invoices:
            prefix = invoice.invoice_number.split("-", 1)[0]
            seq = sequence_of(invoice.invoice_number, prefix)
            if seq is not None:
                highest[prefix] = max(highest.get(prefix, 0), seq)
        for prefix, seq in highest.items():
            uow.sequences.ensure_at_least(sequence_name(prefix), seq)
        uow.commit()

    print("Import committed. Run scripts/ledger_audit.py to verify the ledger.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
