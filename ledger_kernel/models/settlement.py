"""
Module: ledger_kernel.models.settlement
Responsibility: ORM persistence for settlement (payout batch) lifecycle
    records, from creation to bank-confirmed finality.
Architecture position: Kernel > Models.  May import from db/ and domain/states.py.

Invariants enforced:
    - status only advances along SETTLEMENT_TRANSITIONS (service layer).
    - BANK_CONFIRMED requires a non-empty utr_number (service layer).
    - SETTLED and retries-exhausted records are immutable (ORM listener).
    - settlement_ref is unique per tenant.

Failure modes:
    - IntegrityError on duplicate (tenant_id, settlement_ref).
    - ImmutabilityViolationError on changes to a final record, and on delete.

Audit relevance:
    state_transitions is the ordered {from, to, at, by} walk of the record;
    every entry is also mirrored as a LedgerAuditEvent.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, Enum, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UTCDateTime
from ledger_kernel.domain.states import RECONCILIATION_FINAL_STATES, SettlementStatus


class Settlement(TrackedBase):
    """
    Settlement lifecycle record.

    Contract:
        Mutated only through SettlementStateMachine.  Never deleted; a manual
        replacement is a new record.

    Guarantees:
        - retry_count <= max_retries.
        - retries_exhausted is set once a failure happens with no retries
          left; next_retry_at is None from then on.
    """

    __tablename__ = "settlements"

    __table_args__ = (
        UniqueConstraint("tenant_id", "settlement_ref", name="uq_settlement_ref"),
        Index("idx_settlement_tenant_status", "tenant_id", "status"),
        Index("idx_settlement_retry_queue", "status", "next_retry_at"),
        Index("idx_settlement_merchant", "tenant_id", "merchant_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    settlement_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    gross_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    fees_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    net_amount: Mapped[Decimal] = mapped_column(nullable=False)
    settlement_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[SettlementStatus] = mapped_column(
        Enum(SettlementStatus, native_enum=False, length=20),
        default=SettlementStatus.CREATED,
        nullable=False,
    )

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    retries_exhausted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_retry_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    retry_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Bank-side identifiers
    bank_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    utr_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    bank_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    settlement_batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Per-state timestamps
    funds_reserved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sent_to_bank_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    bank_confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Ordered [{from, to, at, by}, ...]
    state_transitions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<Settlement {self.settlement_ref}: {self.status.value}>"

    @property
    def is_final_for_reconciliation(self) -> bool:
        """True once the bank has confirmed the transfer (UTR recorded)."""
        return self.status in RECONCILIATION_FINAL_STATES

    @property
    def is_terminal(self) -> bool:
        return self.status == SettlementStatus.SETTLED or self.retries_exhausted
