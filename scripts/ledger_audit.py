#!/usr/bin/env python3
"""
Audit every completion project's ledger.

Sums committed invoices per project and compares them with the budget,
paid_to_date and the one-invoice-per-slot rules.  Prints one line per
finding and exits 1 when any BUDGET_INTEGRITY_VIOLATION exists.

Usage:
    python scripts/ledger_audit.py
    python scripts/ledger_audit.py --project PRJ-1 --settings path/to.yaml
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from completion_ledger.services.integrity_validator import IntegrityValidator
from ledger_config import get_active_settings
from ledger_config.bridges import build_unit_of_work_factory, configure_logging_from_settings


def run_audit(uow_factory, project_id: str | None = None) -> int:
    """Print findings; return the number of violations."""
    with uow_factory() as uow:
        validator = IntegrityValidator(uow.projects, uow.tasks, uow.invoices)
        if project_id is not None:
            report = validator.audit_project(project_id)
            if report is None:
                print(f"Project not found: {project_id}", file=sys.stderr)
                return 1
            reports = [report]
        else:
            reports = validator.audit_all()

    violations = 0
    for report in reports:
        status = "OK  " if report.is_clean else "FAIL"
        print(
            f"{status} {report.project_id:<20} budget={report.total_budget:>12} "
            f"committed={report.committed_total:>12} paid_to_date={report.paid_to_date:>12}"
        )
        for finding in report.findings:
            violations += 1
            print(f"     {finding.code} [{finding.kind.value}] {finding.message}")

    print(f"\n{len(reports)} project(s) audited, {violations} violation(s)")
    return violations


def main() -> int:
    parser = argparse.ArgumentParser(description="Audit completion project ledgers")
    parser.add_argument("--project", help="Audit a single project id")
    parser.add_argument("--settings", type=Path, help="Settings YAML file")
    args = parser.parse_args()

    settings = get_active_settings(args.settings)
    configure_logging_from_settings(settings)
    violations = run_audit(build_unit_of_work_factory(settings), args.project)
    return 1 if violations else 0


if __name__ == "__main__":
    sys.exit(main())
