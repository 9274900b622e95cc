#!/usr/bin/env python3
"""
Reconcile payment intents left pending by a crash or cancellation.

Each pending intent is confirmed, rolled forward, rolled back or has its
invoice voided.  Safe to run repeatedly; a second run finds nothing.

Usage:
    python scripts/ledger_recover.py [--settings path/to.yaml]
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from completion_ledger.domain.events import LoggingEventSink
from completion_ledger.services.recovery_service import RecoveryService
from ledger_config import get_active_settings
from ledger_config.bridges import (
    build_payment_policy,
    build_unit_of_work_factory,
    configure_logging_from_settings,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the payment intent recovery sweep")
    parser.add_argument("--settings", type=Path, help="Settings YAML file")
    parser.add_argument(
        "--two-phase-final",
        action="store_true",
        help="Roll final payments forward as processing invoices awaiting settlement",
    )
    args = parser.parse_args()

    settings = get_active_settings(args.settings)
    configure_logging_from_settings(settings)
    service = RecoveryService(
        build_unit_of_work_factory(settings),
        policy=build_payment_policy(settings),
        event_sink=LoggingEventSink(),
        two_phase_final=args.two_phase_final,
    )

    report = service.sweep()
    for action in report.actions:
        print(
            f"{action.kind.value:<15} {action.idempotency_key} "
            f"attempt={action.attempt} invoice={action.invoice_number or '-'} {action.detail}"
        )
    print(f"\n{report.examined} pending intent(s) reconciled")
    return 0


if __name__ == "__main__":
    sys.exit(main())
