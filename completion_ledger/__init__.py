"""
Completion Ledger - payment ledger for completion-based projects.

A budget-conserving payment ledger with:
- A 12% upfront commitment and an 88% task pool
- Per-task manual payments and a gated final payout
- Idempotent, per-project serialized payment actions
- Write-ahead intents with a recovery sweep
- Offline budget integrity audit
"""

__version__ = "0.1.0"
