"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable snapshots handed out by the managers and consumed by
    PostingGuard: period, lock, settlement and override snapshots plus the
    check/decision results.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  from_model() class
    methods are boundary converters invoked only from the service layer.

Invariants enforced:
    - Callers outside the service layer never receive live ORM objects, so
      they cannot mutate a period, lock or settlement behind a manager's back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.domain.states import (
    RECONCILIATION_FINAL_STATES,
    LockStatus,
    LockType,
    OverrideType,
    PeriodStatus,
    PeriodType,
    SettlementStatus,
)

if TYPE_CHECKING:
    from ledger_kernel.models import AccountingPeriod, LedgerLock, OverrideLogEntry, Settlement


@dataclass(frozen=True)
class AccountingPeriodInfo:
    """
    Pure domain representation of an accounting period.

    Guarantees:
        - Immutable (frozen dataclass).
    """

    id: UUID
    tenant_id: str
    period_type: PeriodType
    period_start: date
    period_end: date
    status: PeriodStatus
    closed_by: str | None = None
    closed_at: datetime | None = None
    closure_notes: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    def contains_date(self, check_date: date) -> bool:
        """Check if a date falls within this period."""
        return self.period_start <= check_date <= self.period_end

    @classmethod
    def from_model(cls, model: AccountingPeriod) -> AccountingPeriodInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            period_type=PeriodType(model.period_type),
            period_start=model.period_start,
            period_end=model.period_end,
            status=PeriodStatus(model.status),
            closed_by=model.closed_by,
            closed_at=model.closed_at,
            closure_notes=model.closure_notes,
        )


@dataclass(frozen=True)
class PeriodPostingCheck:
    """
    Result of AccountingPeriodManager.check_period_for_posting().

    posting_allowed is True only for an OPEN period.  override_required is
    True only for SOFT_CLOSED.  error_message explains any denial.
    """

    tenant_id: str
    transaction_date: date
    period_id: UUID | None
    period_type: PeriodType
    status: PeriodStatus | None
    posting_allowed: bool
    override_required: bool
    error_message: str | None = None
    period_start: date | None = None
    period_end: date | None = None

    @property
    def period_found(self) -> bool:
        return self.period_id is not None


@dataclass(frozen=True)
class LedgerLockInfo:
    """Pure domain representation of a ledger lock."""

    id: UUID
    tenant_id: str
    lock_type: LockType
    lock_start_date: date
    lock_end_date: date
    lock_status: LockStatus
    reason: str
    locked_by: str
    locked_at: datetime
    reference_number: str | None = None
    accounting_period_id: UUID | None = None
    locked_by_role: str | None = None
    released_by: str | None = None
    released_at: datetime | None = None
    release_notes: str | None = None

    @property
    def is_active(self) -> bool:
        return self.lock_status == LockStatus.ACTIVE

    @classmethod
    def from_model(cls, model: LedgerLock) -> LedgerLockInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            lock_type=LockType(model.lock_type),
            lock_start_date=model.lock_start_date,
            lock_end_date=model.lock_end_date,
            lock_status=LockStatus(model.lock_status),
            reason=model.reason,
            locked_by=model.locked_by,
            locked_at=model.locked_at,
            reference_number=model.reference_number,
            accounting_period_id=model.accounting_period_id,
            locked_by_role=model.locked_by_role,
            released_by=model.released_by,
            released_at=model.released_at,
            release_notes=model.release_notes,
        )


@dataclass(frozen=True)
class LockCheck:
    """Result of LedgerLockManager.check_locks()."""

    tenant_id: str
    transaction_date: date
    is_locked: bool
    lock_id: UUID | None = None
    lock_type: LockType | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None
    reason: str | None = None
    accounting_period_id: UUID | None = None


@dataclass(frozen=True)
class StateTransition:
    """One {from, to, at, by} step of a settlement's walk."""

    from_status: SettlementStatus | None
    to_status: SettlementStatus
    at: datetime
    by: str

    def to_json(self) -> dict:
        return {
            "from": self.from_status.value if self.from_status else None,
            "to": self.to_status.value,
            "at": self.at.isoformat(),
            "by": self.by,
        }

    @classmethod
    def from_json(cls, data: dict) -> StateTransition:
        return cls(
            from_status=SettlementStatus(data["from"]) if data.get("from") else None,
            to_status=SettlementStatus(data["to"]),
            at=datetime.fromisoformat(data["at"]),
            by=data["by"],
        )


@dataclass(frozen=True)
class SettlementInfo:
    """
    Pure domain representation of a settlement.

    Guarantees:
        - state_transitions is the complete ordered walk, starting with the
          creation step (from_status None -> CREATED).
    """

    id: UUID
    tenant_id: str
    settlement_ref: str
    merchant_id: str
    net_amount: Decimal
    status: SettlementStatus
    retry_count: int
    max_retries: int
    retries_exhausted: bool
    state_transitions: tuple[StateTransition, ...]
    gross_amount: Decimal | None = None
    fees_amount: Decimal | None = None
    settlement_date: date | None = None
    next_retry_at: datetime | None = None
    last_retry_at: datetime | None = None
    failure_reason: str | None = None
    utr_number: str | None = None
    bank_reference_number: str | None = None
    bank_transaction_id: str | None = None
    bank_batch_id: str | None = None
    settlement_batch_id: str | None = None
    funds_reserved_at: datetime | None = None
    sent_to_bank_at: datetime | None = None
    bank_confirmed_at: datetime | None = None
    settled_at: datetime | None = None
    failed_at: datetime | None = None

    @property
    def is_final_for_reconciliation(self) -> bool:
        return self.status in RECONCILIATION_FINAL_STATES

    @property
    def can_retry(self) -> bool:
        return self.status == SettlementStatus.FAILED and not self.retries_exhausted

    @classmethod
    def from_model(cls, model: Settlement) -> SettlementInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            settlement_ref=model.settlement_ref,
            merchant_id=model.merchant_id,
            net_amount=model.net_amount,
            status=SettlementStatus(model.status),
            retry_count=model.retry_count,
            max_retries=model.max_retries,
            retries_exhausted=model.retries_exhausted,
            state_transitions=tuple(
                StateTransition.from_json(t) for t in (model.state_transitions or [])
            ),
            gross_amount=model.gross_amount,
            fees_amount=model.fees_amount,
            settlement_date=model.settlement_date,
            next_retry_at=model.next_retry_at,
            last_retry_at=model.last_retry_at,
            failure_reason=model.failure_reason,
            utr_number=model.utr_number,
            bank_reference_number=model.bank_reference_number,
            bank_transaction_id=model.bank_transaction_id,
            bank_batch_id=model.bank_batch_id,
            settlement_batch_id=model.settlement_batch_id,
            funds_reserved_at=model.funds_reserved_at,
            sent_to_bank_at=model.sent_to_bank_at,
            bank_confirmed_at=model.bank_confirmed_at,
            settled_at=model.settled_at,
            failed_at=model.failed_at,
        )


@dataclass(frozen=True)
class OverrideLogInfo:
    """Pure domain representation of an override log entry."""

    id: UUID
    tenant_id: str
    override_type: OverrideType
    justification: str
    entity_type: str
    entity_id: str
    affected_entities: tuple[dict, ...]
    override_by: str
    override_by_role: str
    created_at: datetime
    approved_by: str | None = None

    @classmethod
    def from_model(cls, model: OverrideLogEntry) -> OverrideLogInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            override_type=OverrideType(model.override_type),
            justification=model.justification,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            affected_entities=tuple(model.affected_entities or []),
            override_by=model.override_by,
            override_by_role=model.override_by_role,
            created_at=model.created_at,
            approved_by=model.approved_by,
        )


@dataclass(frozen=True)
class PostingAuthorization:
    """
    Allow decision returned by PostingGuard.

    Denials are never returned; they are raised as typed errors.
    """

    allowed: bool
    tenant_id: str
    transaction_date: date
    period_id: UUID
    period_status: PeriodStatus
    override_used: bool = False
    override_log_id: UUID | None = None
