"""
completion_ledger.services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure domain rules with stores held
    in a unit of work: eligibility, integrity, payment execution,
    settlement, crash recovery and invoice numbering.  This is the only
    layer that opens units of work or reads the clock.

Architecture position:
    Ledger > Services.  Depends on domain/ and stores/base.py.  The SQL
    store module imports SequenceService from here, so nothing in this
    package may import stores/sql.py.
"""

from completion_ledger.services.eligibility_gate import EligibilityGate
from completion_ledger.services.integrity_validator import (
    BudgetIntegrityResult,
    IntegrityReport,
    IntegrityValidator,
)
from completion_ledger.services.outcomes import PaymentOutcome, PaymentStatus
from completion_ledger.services.payment_orchestrator import PaymentOrchestrator
from completion_ledger.services.project_locks import ProjectLockRegistry
from completion_ledger.services.recovery_service import (
    RecoveryAction,
    RecoveryActionKind,
    RecoveryReport,
    RecoveryService,
)
from completion_ledger.services.sequence_service import SequenceService
from completion_ledger.services.settlement_service import SettlementService

__all__ = [
    "BudgetIntegrityResult",
    "EligibilityGate",
    "IntegrityReport",
    "IntegrityValidator",
    "PaymentOrchestrator",
    "PaymentOutcome",
    "PaymentStatus",
    "ProjectLockRegistry",
    "RecoveryAction",
    "RecoveryActionKind",
    "RecoveryReport",
    "RecoveryService",
    "SequenceService",
    "SettlementService",
]
