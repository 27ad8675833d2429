"""Services for the ledger kernel (write side)."""

from ledger_kernel.services.auditor_service import AuditTrace, AuditTraceEntry, LedgerAuditor
from ledger_kernel.services.lock_service import LedgerLockManager
from ledger_kernel.services.override_log import OverrideAuditLog
from ledger_kernel.services.period_service import PERIOD_EPSILON, AccountingPeriodManager
from ledger_kernel.services.posting_guard import PostingGuard
from ledger_kernel.services.sequence_service import SequenceService
from ledger_kernel.services.settlement_service import SettlementStateMachine

__all__ = [
    "AccountingPeriodManager",
    "AuditTrace",
    "AuditTraceEntry",
    "LedgerAuditor",
    "LedgerLockManager",
    "OverrideAuditLog",
    "PERIOD_EPSILON",
    "PostingGuard",
    "SequenceService",
    "SettlementStateMachine",
]
