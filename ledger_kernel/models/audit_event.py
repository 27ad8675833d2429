"""
Module: ledger_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident ledger audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Hash chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash).  Validated by LedgerAuditor.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    LedgerAuditEvent IS the audit trail.  Every period create/close, lock
    apply/release, settlement create/transition/retry and override produces
    one row carrying the before and after state.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UTCDateTime


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Adding a new action type requires updating LedgerAuditor to
    produce the corresponding event.
    """

    PERIOD_CREATED = "PERIOD_CREATED"
    PERIOD_CLOSED = "PERIOD_CLOSED"

    LOCK_APPLIED = "LOCK_APPLIED"
    LOCK_RELEASED = "LOCK_RELEASED"

    SETTLEMENT_CREATED = "SETTLEMENT_CREATED"
    SETTLEMENT_TRANSITIONED = "SETTLEMENT_TRANSITIONED"
    SETTLEMENT_RETRY_SCHEDULED = "SETTLEMENT_RETRY_SCHEDULED"

    OVERRIDE_RECORDED = "OVERRIDE_RECORDED"


class LedgerAuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT compute hashes; LedgerAuditor does.
    """

    __tablename__ = "ledger_audit_events"

    __table_args__ = (
        Index("idx_ledger_audit_entity", "entity_type", "entity_id"),
        Index("idx_ledger_audit_tenant", "tenant_id", "occurred_at"),
        Index("idx_ledger_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # e.g. "AccountingPeriod", "LedgerLock", "Settlement", "OverrideLogEntry"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # {"before": ..., "after": ..., "metadata": ...}
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerAuditEvent #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        """Check if this is the first event in the hash chain."""
        return self.prev_hash is None
