"""
Ledger Kernel - period, lock and settlement control plane

Decides whether a ledger posting or a settlement transition is allowed:
- Accounting period lifecycle (OPEN -> SOFT_CLOSED -> HARD_CLOSED)
- Ledger locks (period, audit, reconciliation)
- Settlement state machine with bounded, scheduled retries
- Role-gated overrides with an append-only override log
- Tamper-evident audit trail via hash chain
"""

__version__ = "0.1.0"
