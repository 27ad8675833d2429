"""ORM models for the ledger kernel."""

from ledger_kernel.models.accounting_period import AccountingPeriod
from ledger_kernel.models.audit_event import AuditAction, LedgerAuditEvent
from ledger_kernel.models.ledger_lock import LedgerLock
from ledger_kernel.models.override_log import OverrideLogEntry
from ledger_kernel.models.sequence import SequenceCounter
from ledger_kernel.models.settlement import Settlement

__all__ = [
    "AccountingPeriod",
    "AuditAction",
    "LedgerAuditEvent",
    "LedgerLock",
    "OverrideLogEntry",
    "SequenceCounter",
    "Settlement",
]
